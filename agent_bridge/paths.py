from __future__ import annotations

import os
import re
import sys
from pathlib import Path

CONFIG_FILE_NAME = "agent-bridge-config.json"
LOG_FILE_NAME = "agent-bridge-host.log"
CHROME_REGISTRY_ROOT = r"Software\Google\Chrome\NativeMessagingHosts"

# Chrome's rule for native messaging host names.
_HOST_NAME_RE = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")


def is_valid_host_name(raw: str) -> bool:
    return bool(_HOST_NAME_RE.match(str(raw or "")))


def config_dir() -> Path:
    raw = os.environ.get("AGENT_BRIDGE_HOME")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.home() / ".agent-bridge"


def config_path() -> Path:
    raw = os.environ.get("AGENT_BRIDGE_CONFIG")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return config_dir() / CONFIG_FILE_NAME


def log_path() -> Path:
    raw = os.environ.get("AGENT_BRIDGE_LOG")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return config_dir() / LOG_FILE_NAME


def chrome_manifest_dir(platform: str | None = None, home: Path | None = None) -> Path | None:
    """Directory Chrome scans for host manifests, or None where the registry is used instead."""
    platform = platform or sys.platform
    home = home or Path.home()
    if platform == "darwin":
        return home / "Library" / "Application Support" / "Google" / "Chrome" / "NativeMessagingHosts"
    if platform.startswith("linux"):
        return home / ".config" / "google-chrome" / "NativeMessagingHosts"
    return None


def app_data_dir(platform: str | None = None, home: Path | None = None) -> Path:
    platform = platform or sys.platform
    if platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        base = Path(local) if local else ((home or Path.home()) / "AppData" / "Local")
        return base / "AgentBridge"
    if home is not None:
        return home / ".agent-bridge"
    return config_dir()


def launcher_path(platform: str | None = None, home: Path | None = None) -> Path:
    platform = platform or sys.platform
    name = "agent-bridge-host.cmd" if platform == "win32" else "agent-bridge-host"
    return app_data_dir(platform, home) / "bin" / name
