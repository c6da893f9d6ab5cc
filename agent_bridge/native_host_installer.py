from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from . import paths
from .errors import RegistrationError, UnsupportedPlatform

_LOGGER = logging.getLogger("agent_bridge.native_host_installer")


@dataclass(slots=True)
class HostDefinition:
    host_name: str
    script_path: str
    description: str = ""
    interpreter: str | None = None
    allowed_origins: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HostDefinition:
        origins = data.get("allowedOrigins")
        interpreter = data.get("interpreter")
        return cls(
            host_name=str(data.get("hostName") or "").strip(),
            script_path=str(data.get("scriptPath") or "").strip(),
            description=str(data.get("description") or ""),
            interpreter=str(interpreter).strip() if isinstance(interpreter, str) and interpreter.strip() else None,
            allowed_origins=[str(o).strip() for o in origins if str(o).strip()] if isinstance(origins, list) else [],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "hostName": self.host_name,
            "description": self.description,
            "scriptPath": self.script_path,
            "allowedOrigins": list(self.allowed_origins),
        }
        if self.interpreter:
            out["interpreter"] = self.interpreter
        return out


def origin_url(origin: str) -> str:
    """Bare extension ids become ``chrome-extension://<id>/``; full origins are kept."""
    candidate = str(origin or "").strip()
    if "://" in candidate:
        return candidate if candidate.endswith("/") else candidate + "/"
    return f"chrome-extension://{candidate}/"


def build_manifest(definition: HostDefinition) -> dict[str, Any]:
    return {
        "name": definition.host_name,
        "description": definition.description,
        "path": definition.script_path,
        "type": "stdio",
        "allowed_origins": [origin_url(o) for o in definition.allowed_origins],
    }


def _write_manifest(path: Path, manifest: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    if os.name != "nt":
        with contextlib.suppress(Exception):
            path.chmod(0o644)


def _make_executable(path: str, log: logging.Logger) -> None:
    try:
        p = Path(path)
        p.chmod(p.stat().st_mode | 0o755)
    except OSError as exc:
        log.warning("could not set executable bit on %s: %s", path, exc)


def write_launcher(path: Path, *, python_exe: str | None = None, platform: str | None = None) -> Path:
    """Write the wrapper Chrome executes; it starts the broker with this interpreter."""
    platform = platform or sys.platform
    py = str(python_exe or sys.executable)
    path.parent.mkdir(parents=True, exist_ok=True)
    if platform == "win32":
        content = "\n".join(
            [
                "@echo off",
                "setlocal",
                f'"{py}" -m agent_bridge.native_host %*',
                "",
            ]
        )
    else:
        content = "\n".join(
            [
                "#!/usr/bin/env bash",
                "set -euo pipefail",
                f'exec "{py}" -m agent_bridge.native_host "$@"',
                "",
            ]
        )
    path.write_text(content, encoding="utf-8")
    if platform != "win32":
        path.chmod(0o755)
    return path


class RegistrationBackend(Protocol):
    def install(self, definition: HostDefinition) -> str: ...

    def uninstall(self, host_name: str) -> None: ...

    def status(self, host_name: str) -> bool: ...


class PosixManifestBackend:
    """macOS/Linux: one ``<hostName>.json`` in Chrome's NativeMessagingHosts directory."""

    def __init__(self, manifest_dir: Path, *, logger: logging.Logger | None = None) -> None:
        self.manifest_dir = Path(manifest_dir)
        self._log = logger or _LOGGER

    def manifest_path(self, host_name: str) -> Path:
        return self.manifest_dir / f"{host_name}.json"

    def install(self, definition: HostDefinition) -> str:
        out_path = self.manifest_path(definition.host_name)
        try:
            _write_manifest(out_path, build_manifest(definition))
        except OSError as exc:
            raise RegistrationError(f"failed to write native host manifest {out_path}: {exc}") from exc
        _make_executable(definition.script_path, self._log)
        self._log.info("native_host_install_ok host=%s manifest=%s", definition.host_name, out_path)
        return str(out_path)

    def uninstall(self, host_name: str) -> None:
        out_path = self.manifest_path(host_name)
        try:
            out_path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise RegistrationError(f"failed to delete manifest file {out_path}: {exc}") from exc
        self._log.info("native_host_uninstall_ok host=%s manifest=%s", host_name, out_path)

    def status(self, host_name: str) -> bool:
        return self.manifest_path(host_name).exists()


class WinRegistry:
    """Default-value access to keys under HKEY_CURRENT_USER."""

    def __init__(self) -> None:
        import winreg  # type: ignore[import-not-found]

        self._winreg = winreg

    def set_default(self, key_path: str, value: str) -> None:
        winreg = self._winreg
        with winreg.CreateKey(winreg.HKEY_CURRENT_USER, key_path) as handle:
            winreg.SetValueEx(handle, "", 0, winreg.REG_SZ, value)

    def get_default(self, key_path: str) -> str | None:
        winreg = self._winreg
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, key_path) as handle:
                value, _kind = winreg.QueryValueEx(handle, "")
        except FileNotFoundError:
            return None
        return str(value) if value else None

    def delete(self, key_path: str) -> None:
        """Delete ``key_path``; a missing key raises ``FileNotFoundError``."""
        self._winreg.DeleteKey(self._winreg.HKEY_CURRENT_USER, key_path)

    def exists(self, key_path: str) -> bool:
        winreg = self._winreg
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, key_path):
                return True
        except FileNotFoundError:
            return False


class WindowsRegistryBackend:
    """Windows: manifest in the app data dir, referenced by ``HKCU\\<root>\\<hostName>``.

    ``status`` checks only the registry key. A key whose manifest file was
    deleted still reports installed; ``uninstall`` cleans it up.
    """

    def __init__(
        self,
        manifest_dir: Path,
        *,
        registry: Any = None,
        registry_root: str = paths.CHROME_REGISTRY_ROOT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.manifest_dir = Path(manifest_dir)
        self.registry_root = registry_root
        self._registry = registry if registry is not None else WinRegistry()
        self._log = logger or _LOGGER

    def key_path(self, host_name: str) -> str:
        return f"{self.registry_root}\\{host_name}"

    def manifest_path(self, host_name: str) -> str | None:
        """File the registry key currently points to, if any."""
        return self._registry.get_default(self.key_path(host_name))

    def install(self, definition: HostDefinition) -> str:
        manifest_file = self.manifest_dir / f"{definition.host_name}.json"
        try:
            _write_manifest(manifest_file, build_manifest(definition))
        except OSError as exc:
            raise RegistrationError(f"failed to write native host manifest {manifest_file}: {exc}") from exc

        key_path = self.key_path(definition.host_name)
        try:
            self._registry.set_default(key_path, str(manifest_file))
        except OSError as exc:
            # The manifest file stays behind; the next install overwrites it.
            raise RegistrationError(f"registry write failed for HKCU\\{key_path}: {exc}") from exc
        self._log.info("native_host_install_ok host=%s key=HKCU\\%s", definition.host_name, key_path)
        return f"HKEY_CURRENT_USER\\{key_path}"

    def uninstall(self, host_name: str) -> None:
        key_path = self.key_path(host_name)
        try:
            manifest_file = self._registry.get_default(key_path)
            if manifest_file:
                Path(manifest_file).unlink()
        except OSError as exc:
            self._log.warning("could not clean up manifest file for %s: %s", host_name, exc)

        try:
            self._registry.delete(key_path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise RegistrationError(f"failed to delete registry key HKCU\\{key_path}: {exc}") from exc
        self._log.info("native_host_uninstall_ok host=%s key=HKCU\\%s", host_name, key_path)

    def status(self, host_name: str) -> bool:
        try:
            return bool(self._registry.exists(self.key_path(host_name)))
        except OSError as exc:
            self._log.warning("registry status check failed for %s: %s", host_name, exc)
            return False


def select_backend(
    *,
    platform: str | None = None,
    home: Path | None = None,
    registry: Any = None,
    logger: logging.Logger | None = None,
) -> RegistrationBackend:
    platform = platform or sys.platform
    if platform == "win32":
        manifest_dir = paths.app_data_dir(platform, home) / "NativeMessagingHosts"
        return WindowsRegistryBackend(manifest_dir, registry=registry, logger=logger)
    manifest_dir = paths.chrome_manifest_dir(platform, home)
    if manifest_dir is None:
        raise UnsupportedPlatform(platform)
    return PosixManifestBackend(manifest_dir, logger=logger)


__all__ = [
    "HostDefinition",
    "PosixManifestBackend",
    "RegistrationBackend",
    "WinRegistry",
    "WindowsRegistryBackend",
    "build_manifest",
    "origin_url",
    "select_backend",
    "write_launcher",
]
