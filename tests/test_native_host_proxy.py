from __future__ import annotations

import contextlib
import json
import os
import select
import struct
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]

pytestmark = pytest.mark.skipif(os.name == "nt", reason="select() on pipes is POSIX-only")


def _read_exact(fp, n: int, *, timeout_s: float) -> bytes:
    buf = bytearray()
    fd = fp.fileno()
    deadline = time.time() + max(0.01, float(timeout_s))
    while len(buf) < n:
        remaining = deadline - time.time()
        if remaining <= 0:
            raise TimeoutError(f"timeout while reading {n} bytes")
        r, _w, _x = select.select([fd], [], [], remaining)
        if not r:
            continue
        chunk = os.read(fd, n - len(buf))
        if not chunk:
            raise EOFError("unexpected EOF")
        buf.extend(chunk)
    return bytes(buf)


def _read_native_message(fp, *, timeout_s: float) -> Any:
    header = _read_exact(fp, 4, timeout_s=timeout_s)
    (length,) = struct.unpack("<I", header)
    raw = _read_exact(fp, int(length), timeout_s=timeout_s)
    return json.loads(raw.decode("utf-8"))


def _write_native_message(fp, msg: Any) -> None:
    raw = json.dumps(msg, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    fp.write(struct.pack("<I", len(raw)))
    fp.write(raw)
    fp.flush()


def test_native_host_broker_roundtrip(tmp_path: Path) -> None:
    script = tmp_path / "echo.py"
    script.write_text(
        "import json, sys\ndata = json.load(sys.stdin)\nprint(json.dumps({'echo': data}))\n", encoding="utf-8"
    )
    home = tmp_path / "agent-bridge"
    home.mkdir()
    (home / "agent-bridge-config.json").write_text(
        json.dumps({"com.test.echo": {"scriptPath": str(script), "interpreter": sys.executable}}),
        encoding="utf-8",
    )

    env = os.environ.copy()
    env["AGENT_BRIDGE_HOME"] = str(home)
    env["PYTHONPATH"] = os.pathsep.join([str(ROOT), env.get("PYTHONPATH", "")])
    for key in ("AGENT_BRIDGE_CONFIG", "AGENT_BRIDGE_LOG"):
        env.pop(key, None)

    proc = subprocess.Popen(
        [sys.executable, "-m", "agent_bridge.native_host", "chrome-extension://abc/"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env,
        cwd=str(ROOT),
    )
    assert proc.stdin is not None
    assert proc.stdout is not None
    try:
        _write_native_message(proc.stdin, {"hostName": "com.test.echo", "payload": {"action": "ping"}})
        assert _read_native_message(proc.stdout, timeout_s=10.0) == {"echo": {"action": "ping"}}

        _write_native_message(proc.stdin, {"hostName": "com.unknown.host", "payload": {}})
        assert _read_native_message(proc.stdout, timeout_s=5.0) == {
            "error": "No host registered with name: com.unknown.host"
        }

        # Host edits are visible without restarting the broker.
        (home / "agent-bridge-config.json").write_text(
            json.dumps({"com.unknown.host": {"scriptPath": str(script), "interpreter": sys.executable}}),
            encoding="utf-8",
        )
        _write_native_message(proc.stdin, {"hostName": "com.unknown.host", "payload": [1]})
        assert _read_native_message(proc.stdout, timeout_s=10.0) == {"echo": [1]}

        proc.stdin.close()
        assert proc.wait(timeout=5.0) == 0
        log_text = (home / "agent-bridge-host.log").read_text(encoding="utf-8")
        assert "AgentBridge host started" in log_text
        assert "No host registered with name: com.unknown.host" in log_text
    finally:
        with contextlib.suppress(Exception):
            proc.terminate()
        with contextlib.suppress(Exception):
            proc.wait(timeout=2.0)
