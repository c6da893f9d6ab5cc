from __future__ import annotations

import json
from pathlib import Path

import pytest


def _manager(tmp_path: Path):
    from agent_bridge.host_manager import HostManager
    from agent_bridge.host_store import HostStore
    from agent_bridge.native_host_installer import PosixManifestBackend

    return HostManager(
        HostStore(tmp_path / "home" / "agent-bridge-config.json"),
        PosixManifestBackend(tmp_path / "NativeMessagingHosts"),
        tmp_path / "home" / "bin" / "agent-bridge-host",
        python_exe="/usr/bin/python3",
        platform="linux",
    )


def _definition(script: str, name: str = "com.test.echo", **kwargs):
    from agent_bridge.native_host_installer import HostDefinition

    return HostDefinition(host_name=name, script_path=script, allowed_origins=["a" * 32], **kwargs)


def test_install_points_manifest_at_launcher_and_saves_script(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    result = manager.install_host(_definition("/srv/scripts/echo.py", interpreter="python3"))
    assert result.ok is True
    assert result.to_dict() == {"success": True, "path": str(tmp_path / "NativeMessagingHosts" / "com.test.echo.json")}

    manifest = json.loads(Path(result.path or "").read_text(encoding="utf-8"))
    assert manifest["path"] == str(tmp_path / "home" / "bin" / "agent-bridge-host")
    assert manifest["allowed_origins"] == ["chrome-extension://" + "a" * 32 + "/"]

    config = json.loads((tmp_path / "home" / "agent-bridge-config.json").read_text(encoding="utf-8"))
    assert config["com.test.echo"]["scriptPath"] == "/srv/scripts/echo.py"
    assert config["com.test.echo"]["interpreter"] == "python3"
    assert manager.host_status("com.test.echo") is True


def test_saved_hosts_are_resolvable_by_the_broker(tmp_path: Path) -> None:
    from agent_bridge.host_directory import HostTarget, JsonFileHostDirectory

    manager = _manager(tmp_path)
    manager.install_host(_definition("/srv/first.py"))
    manager.install_host(_definition("/srv/second.py"))

    directory = JsonFileHostDirectory(tmp_path / "home" / "agent-bridge-config.json")
    assert directory.resolve("com.test.echo") == HostTarget("com.test.echo", "/srv/second.py", None)
    assert [h["scriptPath"] for h in manager.list_hosts()] == ["/srv/second.py"]


def test_uninstall_removes_registration_and_entry(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    manager.install_host(_definition("/srv/echo.py"))
    manager.install_host(_definition("/srv/other.py", name="com.test.other"))

    result = manager.uninstall_host("com.test.echo")
    assert result.to_dict() == {"success": True}
    assert manager.host_status("com.test.echo") is False
    assert [h["hostName"] for h in manager.list_hosts()] == ["com.test.other"]
    assert manager.list_hosts()[0]["installed"] is True

    assert manager.uninstall_host("com.never.installed").ok is True


@pytest.mark.parametrize("name", ["", "Com.Upper", "com..double", "../escape", "com.test.echo/"])
def test_invalid_host_names_are_rejected(tmp_path: Path, name: str) -> None:
    manager = _manager(tmp_path)
    result = manager.install_host(_definition("/srv/echo.py", name=name))
    assert result.ok is False
    assert "invalid host name" in (result.error or "")
    assert not (tmp_path / "NativeMessagingHosts").exists()
    assert manager.uninstall_host(name).ok is False
    assert manager.host_status(name) is False


def test_install_failure_is_reported_not_raised(tmp_path: Path) -> None:
    from agent_bridge.host_manager import HostManager
    from agent_bridge.host_store import HostStore
    from agent_bridge.native_host_installer import WindowsRegistryBackend

    class _DeniedRegistry:
        def set_default(self, key_path: str, value: str) -> None:
            raise PermissionError("access denied")

    manager = HostManager(
        HostStore(tmp_path / "cfg.json"),
        WindowsRegistryBackend(tmp_path / "hosts", registry=_DeniedRegistry()),
        tmp_path / "bin" / "agent-bridge-host.cmd",
        platform="win32",
    )
    result = manager.install_host(_definition("C:/scripts/echo.py"))
    assert result.ok is False
    assert "registry write failed" in (result.error or "")
    # Nothing is saved for the broker when registration fails.
    assert not (tmp_path / "cfg.json").exists()


def test_cli_install_status_list_uninstall(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    from agent_bridge.cli import main

    manager = _manager(tmp_path)
    script = tmp_path / "echo.py"
    script.write_text("print('{}')\n", encoding="utf-8")

    argv = ["install", "com.test.echo", str(script), "--interpreter", "python3", "--origin", "b" * 32]
    assert main(argv, manager=manager) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["success"] is True

    assert main(["status", "com.test.echo"], manager=manager) == 0
    assert json.loads(capsys.readouterr().out) == {"hostName": "com.test.echo", "installed": True}

    assert main(["list"], manager=manager) == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed[0]["scriptPath"] == str(script.resolve())
    assert listed[0]["allowedOrigins"] == ["b" * 32]

    assert main(["uninstall", "com.test.echo"], manager=manager) == 0
    assert json.loads(capsys.readouterr().out) == {"success": True}

    assert main(["install", "Bad Name", str(script)], manager=manager) == 1
    assert json.loads(capsys.readouterr().out)["success"] is False


def test_host_store_get_and_remove(tmp_path: Path) -> None:
    from agent_bridge.host_store import HostStore

    store = HostStore(tmp_path / "cfg.json")
    assert store.list_hosts() == []
    assert store.get_host("com.test.echo") is None

    store.add_host(_definition("/srv/echo.py", description="Echo"))
    saved = store.get_host("com.test.echo")
    assert saved is not None
    assert saved.description == "Echo"
    assert saved.allowed_origins == ["a" * 32]

    assert store.remove_host("com.test.echo") is True
    assert store.remove_host("com.test.echo") is False
    assert json.loads((tmp_path / "cfg.json").read_text(encoding="utf-8")) == {}


def test_cli_list_reports_corrupt_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    from agent_bridge.cli import main

    manager = _manager(tmp_path)
    config = tmp_path / "home" / "agent-bridge-config.json"
    config.parent.mkdir(parents=True)
    config.write_text("{not json", encoding="utf-8")

    assert main(["list"], manager=manager) == 1
    out = json.loads(capsys.readouterr().out)
    assert out["success"] is False
    assert "cannot read host config" in out["error"]
