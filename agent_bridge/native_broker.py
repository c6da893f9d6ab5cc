from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Callable
from typing import Any

from .config import BrokerConfig
from .errors import BridgeError, MalformedEnvelope
from .host_directory import HostDirectory
from .native_framing import FrameDemultiplexer, FrameEncodeError, FramePayloadError, encode_frame
from .supervisor import run_host

_LOGGER = logging.getLogger("agent_bridge.native_broker")

PARSE_ERROR_MESSAGE = "Failed to parse incoming JSON message."
_READ_CHUNK = 64 * 1024


def write_stdout_frame(frame: bytes) -> None:
    """Write one encoded frame to stdout in a single call."""
    sys.stdout.buffer.write(frame)
    sys.stdout.buffer.flush()


def parse_envelope(message: Any) -> tuple[str, Any]:
    if not isinstance(message, dict):
        raise MalformedEnvelope()
    host_name = message.get("hostName")
    payload = message.get("payload")
    if not isinstance(host_name, str) or not host_name.strip() or payload is None:
        raise MalformedEnvelope()
    return host_name, payload


class NativeBroker:
    """Extension (native messaging) -> one child process per request.

    Each inbound envelope names a host; the host's script is looked up in the
    directory on every request, run with the payload on stdin, and its output
    becomes exactly one reply frame.
    """

    def __init__(
        self,
        directory: HostDirectory,
        *,
        config: BrokerConfig | None = None,
        write: Callable[[bytes], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._directory = directory
        self._config = config or BrokerConfig()
        self._write = write or write_stdout_frame
        self._log = logger or _LOGGER
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._demux = FrameDemultiplexer(
            self._dispatch,
            on_invalid=self._dispatch_invalid,
            max_frame_bytes=self._config.max_frame_bytes,
            logger=self._log,
        )

    async def send(self, message: Any) -> None:
        try:
            frame = encode_frame(message)
        except FrameEncodeError as exc:
            self._log.error("Failed to send message: %s", exc)
            return
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write, frame)
            except OSError as exc:
                self._log.error("Failed to write reply frame: %s", exc)

    async def process(self, message: Any) -> Any:
        """Resolve and run one envelope; returns the reply value."""
        try:
            host_name, payload = parse_envelope(message)
            target = self._directory.resolve(host_name)
        except BridgeError as exc:
            self._log.error("%s", exc)
            return {"error": str(exc)}

        self._log.debug("running host %s: %s", host_name, target.script_path)
        outcome = await run_host(target, payload, timeout=self._config.child_timeout, logger=self._log)
        return outcome.reply()

    async def handle_message(self, message: Any) -> None:
        reply = await self.process(message)
        await self.send(reply)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log.error("request handler crashed: %r", task.exception())

    def _dispatch(self, message: Any) -> None:
        self._spawn(self.handle_message(message))

    def _dispatch_invalid(self, _exc: FramePayloadError) -> None:
        self._spawn(self.send({"error": PARSE_ERROR_MESSAGE}))

    def feed(self, chunk: bytes) -> int:
        """Push raw stdin bytes; complete frames are scheduled as requests."""
        return self._demux.feed(chunk)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, fd: int | None = None) -> int:
        fd = sys.stdin.fileno() if fd is None else fd
        self._log.info("AgentBridge host started (pid=%s)", os.getpid())
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(os.read, fd, _READ_CHUNK)
                except OSError as exc:
                    self._log.error("stdin read failed: %s", exc)
                    break
                if not chunk:
                    break
                self.feed(chunk)
        finally:
            await self.drain()
            if self._demux.buffered:
                self._log.warning("stdin closed with %d bytes of an incomplete frame", self._demux.buffered)
            self._log.info("AgentBridge host stopped")
        return 0


__all__ = ["PARSE_ERROR_MESSAGE", "NativeBroker", "parse_envelope", "write_stdout_frame"]
