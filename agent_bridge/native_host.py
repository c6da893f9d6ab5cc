"""Chrome Native Messaging host for Agent Bridge.

Chrome launches this process (through the launcher written at install time)
when the extension calls ``connectNative()``. Every inbound message names a
registered host; the broker runs that host's script and relays its output.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from .config import BrokerConfig
from .host_directory import JsonFileHostDirectory
from .native_broker import NativeBroker

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(log_path: Path, *, debug: bool = False) -> None:
    # Native messaging requires strict stdout framing. Never write logs to stdout.
    level = logging.DEBUG if debug else logging.INFO
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError:
        handler = logging.StreamHandler(sys.stderr)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler], force=True)


def main() -> None:
    config = BrokerConfig.from_env()
    configure_logging(config.log_path, debug=config.debug)
    broker = NativeBroker(JsonFileHostDirectory(config.config_path), config=config)
    try:
        raise SystemExit(asyncio.run(broker.run()))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
