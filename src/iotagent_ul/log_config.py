"""
Logging setup for the agent process.

One level for core, backend and bindings. It comes from the iota config's
log_level entry (filled from IOTA_LOG_LEVEL by load_config), falling back to
the IOTA_LOG_LEVEL env var when no config could be loaded. Level names follow
the IoT agent convention: DEBUG, INFO, WARN, ERROR, FATAL.
"""

from __future__ import annotations

import logging
import os
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

IOTA_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(iota: dict[str, Any] | None = None) -> int:
    """
    Install the root handler and set the agent log level. Unknown level
    names fall back to INFO with a warning. Returns the level applied.
    """
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    raw = (iota or {}).get("log_level") or os.environ.get("IOTA_LOG_LEVEL", "")
    name = str(raw).strip().upper()
    level = IOTA_LEVELS.get(name, logging.INFO)

    logging.getLogger().setLevel(level)
    if name and name not in IOTA_LEVELS:
        logging.getLogger(__name__).warning("Unknown log level %r; using INFO", raw)
    return level
