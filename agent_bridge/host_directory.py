from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .errors import ConfigUnavailable, HostNotFound

_LOGGER = logging.getLogger("agent_bridge.host_directory")


@dataclass(frozen=True, slots=True)
class HostTarget:
    host_name: str
    script_path: str
    interpreter: str | None = None


class HostDirectory(Protocol):
    def resolve(self, host_name: str) -> HostTarget: ...


def _target_from_entry(host_name: str, entry: Any) -> HostTarget:
    if not isinstance(entry, dict):
        raise ConfigUnavailable(f"entry for {host_name} is not an object")
    script_path = entry.get("scriptPath")
    if not isinstance(script_path, str):
        raise ConfigUnavailable(f"entry for {host_name} has no scriptPath")
    interpreter = entry.get("interpreter")
    interpreter = str(interpreter).strip() if isinstance(interpreter, str) and interpreter.strip() else None
    return HostTarget(host_name=host_name, script_path=script_path, interpreter=interpreter)


class JsonFileHostDirectory:
    """Host directory backed by the management app's JSON file.

    The file is re-read on every ``resolve`` so edits apply without restarting the broker.
    """

    def __init__(self, path: Path, *, logger: logging.Logger | None = None) -> None:
        self.path = Path(path)
        self._log = logger or _LOGGER

    def load(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self._log.error("Failed to load config file at %s: %s", self.path, exc)
            raise ConfigUnavailable(str(exc)) from exc
        if not isinstance(data, dict):
            self._log.error("Config file at %s is not a JSON object", self.path)
            raise ConfigUnavailable("top-level value is not an object")
        return data

    def resolve(self, host_name: str) -> HostTarget:
        entries = self.load()
        if host_name not in entries:
            raise HostNotFound(host_name)
        return _target_from_entry(host_name, entries[host_name])


class InMemoryHostDirectory:
    def __init__(self, entries: dict[str, Any] | None = None) -> None:
        self.entries: dict[str, Any] = dict(entries or {})

    def resolve(self, host_name: str) -> HostTarget:
        if host_name not in self.entries:
            raise HostNotFound(host_name)
        entry = self.entries[host_name]
        if isinstance(entry, HostTarget):
            return entry
        return _target_from_entry(host_name, entry)


__all__ = ["HostDirectory", "HostTarget", "InMemoryHostDirectory", "JsonFileHostDirectory"]
