from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from . import paths

DEFAULT_CHILD_TIMEOUT = 300.0
DEFAULT_MAX_FRAME_BYTES = 64 * 1024 * 1024


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


@dataclass
class BrokerConfig:
    config_path: Path = field(default_factory=paths.config_path)
    log_path: Path = field(default_factory=paths.log_path)
    child_timeout: float | None = DEFAULT_CHILD_TIMEOUT
    max_frame_bytes: int | None = DEFAULT_MAX_FRAME_BYTES
    debug: bool = False

    @classmethod
    def from_env(cls) -> BrokerConfig:
        timeout = _env_float("AGENT_BRIDGE_CHILD_TIMEOUT", DEFAULT_CHILD_TIMEOUT)
        max_bytes = _env_int("AGENT_BRIDGE_MAX_FRAME_BYTES", DEFAULT_MAX_FRAME_BYTES)
        return cls(
            config_path=paths.config_path(),
            log_path=paths.log_path(),
            # 0 (or negative) disables the bound.
            child_timeout=timeout if timeout > 0 else None,
            max_frame_bytes=max_bytes if max_bytes > 0 else None,
            debug=os.environ.get("AGENT_BRIDGE_DEBUG") == "1",
        )
