"""Runs one host script per request.

The child receives the JSON-encoded payload on stdin (closed right after) and
is expected to print a JSON document and exit 0.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import BridgeError, ChildExitedNonZero, ChildTimedOut, ScriptMissing, SpawnFailed
from .host_directory import HostTarget

_LOGGER = logging.getLogger("agent_bridge.supervisor")

SUCCESS = "success"
RAW = "raw"
FAILURE = "failure"

_READ_CHUNK = 64 * 1024
_KILL_GRACE = 2.0


@dataclass(frozen=True, slots=True)
class Outcome:
    kind: str
    value: Any = None
    error: BridgeError | None = None

    @classmethod
    def success(cls, value: Any) -> Outcome:
        return cls(SUCCESS, value=value)

    @classmethod
    def raw(cls, text: str) -> Outcome:
        return cls(RAW, value=text)

    @classmethod
    def failure(cls, error: BridgeError) -> Outcome:
        return cls(FAILURE, error=error)

    @property
    def ok(self) -> bool:
        return self.kind != FAILURE

    def reply(self) -> Any:
        """Wire form of this outcome."""
        if self.kind == SUCCESS:
            return self.value
        if self.kind == RAW:
            return {"response": self.value}
        return {"error": str(self.error)}


def _argv(target: HostTarget) -> list[str]:
    if target.interpreter:
        return [target.interpreter, target.script_path]
    return [target.script_path]


async def _collect(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        sink.extend(chunk)


async def _feed_stdin(proc: asyncio.subprocess.Process, data: bytes) -> None:
    if proc.stdin is None:
        return
    # A child that exits without reading its input is not an error.
    with contextlib.suppress(BrokenPipeError, ConnectionResetError):
        proc.stdin.write(data)
        await proc.stdin.drain()
    with contextlib.suppress(BrokenPipeError, ConnectionResetError):
        proc.stdin.close()


def _kill_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill the child and everything it started in its session."""
    if os.name != "nt":
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)
            return
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


async def run_host(
    target: HostTarget,
    payload: Any,
    *,
    timeout: float | None = None,
    logger: logging.Logger | None = None,
) -> Outcome:
    log = logger or _LOGGER

    if not target.script_path or not Path(target.script_path).exists():
        err = ScriptMissing(target.host_name, target.script_path)
        log.error("%s", err)
        return Outcome.failure(err)

    argv = _argv(target)
    spawn_kwargs: dict[str, Any] = {}
    if os.name != "nt":
        # Own process group, so a timeout can take down grandchildren holding the pipes.
        spawn_kwargs["start_new_session"] = True
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **spawn_kwargs,
        )
    except (OSError, ValueError) as exc:
        err = SpawnFailed(argv[0], str(exc))
        log.error("Failed to spawn process for %s: %s", target.host_name, exc)
        return Outcome.failure(err)

    data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    stdout_b = bytearray()
    stderr_b = bytearray()
    readers = asyncio.ensure_future(asyncio.gather(_collect(proc.stdout, stdout_b), _collect(proc.stderr, stderr_b)))
    exchange = asyncio.ensure_future(asyncio.gather(_feed_stdin(proc, data), readers, proc.wait()))
    try:
        await asyncio.wait_for(asyncio.shield(exchange), timeout)
    except asyncio.TimeoutError:
        _kill_tree(proc)
        # Keep what the child wrote before it was killed, but never wait on
        # pipes some detached descendant may still hold open.
        await asyncio.wait({exchange}, timeout=_KILL_GRACE)
        exchange.cancel()
        with contextlib.suppress(asyncio.CancelledError, OSError):
            await exchange
        err = ChildTimedOut(float(timeout or 0), stderr_b.decode("utf-8", errors="replace"))
        log.error("Script %s killed after %ss (pid=%s)", target.script_path, timeout, proc.pid)
        return Outcome.failure(err)

    output = stdout_b.decode("utf-8", errors="replace")
    error_output = stderr_b.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        log.error("Script %s exited with code %s: %s", target.script_path, proc.returncode, error_output)
        return Outcome.failure(ChildExitedNonZero(int(proc.returncode or 0), error_output))

    try:
        return Outcome.success(json.loads(output))
    except ValueError:
        return Outcome.raw(output)


__all__ = ["FAILURE", "RAW", "SUCCESS", "Outcome", "run_host"]
