from __future__ import annotations


class BridgeError(Exception):
    """Base for request-path errors. ``str(exc)`` is the message sent over the wire."""


class MalformedEnvelope(BridgeError):
    def __init__(self) -> None:
        super().__init__("Invalid message format. 'hostName' and 'payload' are required.")


class ConfigUnavailable(BridgeError):
    def __init__(self, detail: str = "") -> None:
        super().__init__("Host config file not found or corrupt.")
        self.detail = detail


class HostNotFound(BridgeError):
    def __init__(self, host_name: str) -> None:
        super().__init__(f"No host registered with name: {host_name}")
        self.host_name = host_name


class ScriptMissing(BridgeError):
    def __init__(self, host_name: str, script_path: str) -> None:
        super().__init__(f"Script path not found for host {host_name}: {script_path}")
        self.host_name = host_name
        self.script_path = script_path


class SpawnFailed(BridgeError):
    def __init__(self, program: str, reason: str) -> None:
        super().__init__(f"Failed to spawn {program}: {reason}")
        self.program = program


class ChildExitedNonZero(BridgeError):
    def __init__(self, returncode: int, stderr: str) -> None:
        super().__init__(f"Script execution failed: {stderr}")
        self.returncode = returncode
        self.stderr = stderr


class ChildTimedOut(BridgeError):
    def __init__(self, timeout: float, stderr: str) -> None:
        super().__init__(f"Script execution timed out after {timeout:g} seconds: {stderr}")
        self.timeout = timeout
        self.stderr = stderr


class RegistrationError(Exception):
    pass


class UnsupportedPlatform(RegistrationError):
    def __init__(self, platform: str) -> None:
        super().__init__(f"unsupported platform for native messaging: {platform}")
        self.platform = platform


class InvalidHostName(RegistrationError):
    def __init__(self, host_name: str) -> None:
        super().__init__(
            f"invalid host name {host_name!r}: use lowercase letters, digits, '_' and dot-separated segments"
        )
        self.host_name = host_name
