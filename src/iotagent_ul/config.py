"""
Agent configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/iotagent-ul/agent.env (system install)
2) ~/.config/iotagent-ul/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)

The `iota` section is opaque to the agent core and handed to the backend as-is.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Any, Iterable, Optional

from dotenv import load_dotenv

DEFAULT_BINDINGS = ("mqtt",)


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def package_version() -> str:
    try:
        return _pkg_version("iotagent-ul")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/iotagent-ul/agent.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "iotagent-ul" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _optional_env(key: str) -> Optional[str]:
    v = os.getenv(key)
    return v if v else None


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _parse_list(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True, slots=True)
class MqttConfig:
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True, slots=True)
class AgentConfig:
    mqtt: MqttConfig
    iota: dict[str, Any] = field(default_factory=dict)
    bindings: tuple[str, ...] = DEFAULT_BINDINGS
    agent_version: str = "0.0.0+dev"

    @property
    def default_api_key(self) -> Optional[str]:
        return self.iota.get("default_api_key")


def _load_env_files() -> None:
    for p in _env_paths():
        if p.is_file():
            # do not override existing env vars; later files can fill missing
            load_dotenv(p, override=False)


def _load_mqtt(required: bool) -> MqttConfig:
    if required:
        host = _require_env("MQTT_HOST")
        port = _parse_int("MQTT_PORT", _require_env("MQTT_PORT"))
    else:
        host = os.getenv("MQTT_HOST", "localhost")
        port = _parse_int("MQTT_PORT", os.getenv("MQTT_PORT", "1883"))
    if not (1 <= port <= 65535):
        raise ConfigError(f"MQTT_PORT out of range: {port}")

    return MqttConfig(
        host=host,
        port=port,
        username=_optional_env("MQTT_USERNAME"),
        password=_optional_env("MQTT_PASSWORD"),
    )


def _load_iota() -> dict[str, Any]:
    iota: dict[str, Any] = {
        "service": os.getenv("IOTA_SERVICE", "howtoservice"),
        "subservice": os.getenv("IOTA_SUBSERVICE", "/howto"),
        "default_api_key": _require_env("IOTA_DEFAULT_APIKEY"),
        "default_type": os.getenv("IOTA_DEFAULT_TYPE", "Thing"),
    }

    provider_url = _optional_env("IOTA_PROVIDER_URL")
    if provider_url:
        iota["provider_url"] = provider_url

    timeout_raw = _optional_env("IOTA_TIMEOUT")
    if timeout_raw is not None:
        timeout_s = _parse_int("IOTA_TIMEOUT", timeout_raw)
        if timeout_s <= 0:
            raise ConfigError("IOTA_TIMEOUT must be > 0")
        iota["timeout_s"] = timeout_s

    log_level = _optional_env("IOTA_LOG_LEVEL")
    if log_level:
        iota["log_level"] = log_level

    return iota


def load_config(*, dotenv_enabled: bool = True) -> AgentConfig:
    """
    Load config by reading env files and then validating environment variables.

    Returns an immutable AgentConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        _load_env_files()

    bindings = _parse_list(os.getenv("IOTA_BINDINGS", ",".join(DEFAULT_BINDINGS)))
    if not bindings:
        raise ConfigError("IOTA_BINDINGS must name at least one binding")

    return AgentConfig(
        mqtt=_load_mqtt(required="mqtt" in bindings),
        iota=_load_iota(),
        bindings=bindings,
        agent_version=package_version(),
    )
