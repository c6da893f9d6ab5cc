"""Management side: register hosts with Chrome and keep the host directory in sync.

Every manifest points at the same broker launcher; the per-host script path
lives only in the host directory file, which the broker reads on each request.
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import paths
from .errors import InvalidHostName, RegistrationError
from .host_store import HostStore
from .native_host_installer import HostDefinition, RegistrationBackend, select_backend, write_launcher

_LOGGER = logging.getLogger("agent_bridge.host_manager")


@dataclass(slots=True)
class RegistrationResult:
    ok: bool = False
    path: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.ok}
        if self.path is not None:
            out["path"] = self.path
        if self.error is not None:
            out["error"] = self.error
        return out


class HostManager:
    def __init__(
        self,
        store: HostStore,
        backend: RegistrationBackend,
        launcher: Path,
        *,
        python_exe: str | None = None,
        platform: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.launcher = Path(launcher)
        self._python_exe = python_exe or sys.executable
        self._platform = platform or sys.platform
        self._log = logger or _LOGGER

    @classmethod
    def default(cls, *, platform: str | None = None, home: Path | None = None) -> HostManager:
        platform = platform or sys.platform
        return cls(
            HostStore(paths.config_path()),
            select_backend(platform=platform, home=home),
            paths.launcher_path(platform, home),
            platform=platform,
        )

    def install_host(self, definition: HostDefinition) -> RegistrationResult:
        result = RegistrationResult()
        try:
            if not paths.is_valid_host_name(definition.host_name):
                raise InvalidHostName(definition.host_name)
            if not definition.script_path:
                raise RegistrationError("scriptPath is required")
            launcher = write_launcher(self.launcher, python_exe=self._python_exe, platform=self._platform)
            # The browser runs the broker; the broker runs the user's script.
            registered = dataclasses.replace(definition, script_path=str(launcher))
            result.path = self.backend.install(registered)
            self.store.add_host(definition)
        except (RegistrationError, OSError, ValueError) as exc:
            self._log.warning("install failed host=%s: %s", definition.host_name, exc)
            result.error = str(exc)
            return result
        result.ok = True
        return result

    def uninstall_host(self, host_name: str) -> RegistrationResult:
        result = RegistrationResult()
        try:
            if not paths.is_valid_host_name(host_name):
                raise InvalidHostName(host_name)
            self.backend.uninstall(host_name)
            self.store.remove_host(host_name)
        except (RegistrationError, OSError, ValueError) as exc:
            self._log.warning("uninstall failed host=%s: %s", host_name, exc)
            result.error = str(exc)
            return result
        result.ok = True
        return result

    def host_status(self, host_name: str) -> bool:
        if not paths.is_valid_host_name(host_name):
            return False
        return self.backend.status(host_name)

    def list_hosts(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for definition in self.store.list_hosts():
            entry = definition.to_dict()
            entry["installed"] = self.host_status(definition.host_name)
            out.append(entry)
        return out


__all__ = ["HostManager", "RegistrationResult"]
