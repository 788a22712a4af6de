"""
MQTT topic schema for the UL2.0 MQTT binding.

All topics under /<api_key>/<device_id>/.
Device -> agent: attrs (measure payload), attrs/<attribute> (single raw value),
cmdexe (command result).
Agent -> device: cmd (command payload).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_ID_RE = re.compile(r"^[^/#+\s]+$")


class TopicSchemaError(ValueError):
    """Raised when an invalid identifier is used to construct topics."""


def _validate_id(name: str, value: str) -> str:
    if not isinstance(value, str) or not value:
        raise TopicSchemaError(f"{name} must be a non-empty string")
    if not _ID_RE.fullmatch(value):
        raise TopicSchemaError(
            f"{name} '{value}' is invalid; must not contain '/', '#', '+' or whitespace"
        )
    return value


@dataclass(frozen=True, slots=True)
class ParsedTopic:
    api_key: str
    device_id: str
    kind: str  # "attrs", "cmdexe"
    attribute: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TopicSchema:
    """
    MQTT topic schema for a single API key.
    Root: /<api_key>
    """

    api_key: str

    def __post_init__(self) -> None:
        _validate_id("api_key", self.api_key)

    @property
    def base(self) -> str:
        return f"/{self.api_key}"

    def device_base(self, device_id: str) -> str:
        _validate_id("device_id", device_id)
        return f"{self.base}/{device_id}"

    # -------------------------
    # Device -> agent
    # -------------------------
    def attrs(self, device_id: str) -> str:
        return f"{self.device_base(device_id)}/attrs"

    def cmd_exe(self, device_id: str) -> str:
        return f"{self.device_base(device_id)}/cmdexe"

    # -------------------------
    # Agent -> device
    # -------------------------
    def cmd(self, device_id: str) -> str:
        return f"{self.device_base(device_id)}/cmd"

    # -------------------------
    # Subscriptions
    # -------------------------
    def subscriptions(self) -> list[str]:
        return [
            f"{self.base}/+/attrs",
            f"{self.base}/+/attrs/+",
            f"{self.base}/+/cmdexe",
        ]


def parse_topic(topic: str) -> ParsedTopic:
    """
    Split an inbound topic into its parts.
    Raises TopicSchemaError for anything that is not an inbound UL2.0 topic.
    """
    parts = topic.split("/")
    # leading "/" yields an empty first element
    if len(parts) < 4 or parts[0] != "":
        raise TopicSchemaError(f"unrecognised topic: {topic}")

    _, api_key, device_id, kind, *rest = parts
    _validate_id("api_key", api_key)
    _validate_id("device_id", device_id)

    if kind == "attrs" and not rest:
        return ParsedTopic(api_key, device_id, "attrs")
    if kind == "attrs" and len(rest) == 1:
        return ParsedTopic(api_key, device_id, "attrs", _validate_id("attribute", rest[0]))
    if kind == "cmdexe" and not rest:
        return ParsedTopic(api_key, device_id, "cmdexe")
    raise TopicSchemaError(f"unrecognised topic: {topic}")
