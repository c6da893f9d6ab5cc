from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .native_host_installer import HostDefinition


class HostStore:
    """Read/write side of the host directory file (the broker only reads it)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".agent-bridge-", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
            os.replace(tmp, self.path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)

    def list_hosts(self) -> list[HostDefinition]:
        out: list[HostDefinition] = []
        for name, entry in sorted(self._load().items()):
            if isinstance(entry, dict):
                out.append(HostDefinition.from_dict({**entry, "hostName": name}))
        return out

    def get_host(self, host_name: str) -> HostDefinition | None:
        entry = self._load().get(host_name)
        if not isinstance(entry, dict):
            return None
        return HostDefinition.from_dict({**entry, "hostName": host_name})

    def add_host(self, definition: HostDefinition) -> None:
        data = self._load()
        data[definition.host_name] = definition.to_dict()
        self._save(data)

    def remove_host(self, host_name: str) -> bool:
        data = self._load()
        if data.pop(host_name, None) is None:
            return False
        self._save(data)
        return True


__all__ = ["HostStore"]
