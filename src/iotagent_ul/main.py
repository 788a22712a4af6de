"""
UL2.0 IoT Agent entrypoint.

CLI:
  iotagent-ul run              -> run agent until SIGINT/SIGTERM
  iotagent-ul parse <payload>  -> decode a UL2.0 measure payload and print it as JSON
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from dataclasses import dataclass
from typing import Optional

from iotagent_ul.agent import IoTAgent
from iotagent_ul.config import package_version

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    shutdown: threading.Event
    agent: Optional[IoTAgent] = None


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_agent() -> int:
    """
    Runtime mode: load config, start the agent, block until shutdown.
    Returns process exit code.
    """
    from iotagent_ul.backend import LocalBackend
    from iotagent_ul.config import ConfigError, load_config
    from iotagent_ul.log_config import configure_logging

    try:
        cfg = load_config()
    except ConfigError as exc:
        configure_logging()
        logger.error("Invalid configuration: %s", exc)
        return 2

    configure_logging(cfg.iota)

    rt = Runtime(shutdown=threading.Event())
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("UL2.0 IoT Agent")
    logger.info("Version: %s", cfg.agent_version)
    logger.info("Bindings: %s", ", ".join(cfg.bindings))
    logger.info("============================================================")

    agent = IoTAgent(LocalBackend())
    rt.agent = agent

    try:
        agent.start(cfg)
    except Exception:
        logger.exception("Agent start failed")
        _shutdown(rt)
        return 1

    logger.info("Agent running (shutdown via SIGINT/SIGTERM)")

    try:
        while not rt.shutdown.is_set():
            rt.shutdown.wait(0.5)
    finally:
        _shutdown(rt)

    return 0


def _shutdown(rt: Runtime) -> None:
    logger.info("Shutting down...")
    if rt.agent:
        rt.agent.stop()


def parse_payload(payload: str) -> int:
    from iotagent_ul.errors import ParseError
    from iotagent_ul.ul_parser import parse_measures

    try:
        groups = parse_measures(payload)
    except ParseError as exc:
        print(f"error: {exc}")
        return 1
    print(json.dumps(groups))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="iotagent-ul")
    p.add_argument("--version", action="version", version=package_version())

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Run agent runtime")

    parse_parser = sub.add_parser("parse", help="Decode a UL2.0 measure payload")
    parse_parser.add_argument("payload", help="e.g. 't|21.5|h|40' or 't=21.5#h=40'")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_agent())

    if args.cmd == "parse":
        raise SystemExit(parse_payload(args.payload))

    raise SystemExit(2)


if __name__ == "__main__":
    main()
