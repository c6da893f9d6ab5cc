"""Chrome Native Messaging framing: ``[u32 little-endian length][UTF-8 JSON]``.

The same format is used in both directions. The decoder side is incremental:
bytes may arrive in arbitrary chunks and a frame is only decoded once all of
its payload is buffered.
"""

from __future__ import annotations

import json
import logging
import struct
from collections.abc import Callable
from typing import Any

_HEADER = struct.Struct("<I")
HEADER_SIZE = _HEADER.size

_LOGGER = logging.getLogger("agent_bridge.native_framing")


class FrameError(Exception):
    pass


class FrameEncodeError(FrameError):
    pass


class FrameLengthError(FrameError):
    """Declared length is unacceptable; the stream can no longer be trusted."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"frame length {length} exceeds limit {limit}")
        self.length = length
        self.limit = limit


class FramePayloadError(FrameError):
    """A complete frame arrived but its payload is not UTF-8 JSON."""

    def __init__(self, consumed: int, reason: str, content: str = "") -> None:
        super().__init__(reason)
        self.consumed = consumed
        self.content = content


def encode_frame(value: Any) -> bytes:
    try:
        raw = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise FrameEncodeError(f"value is not JSON-serializable: {exc}") from exc
    return _HEADER.pack(len(raw)) + raw


def try_decode_one(buffer: bytes | bytearray, *, max_frame_bytes: int | None = None) -> tuple[Any, int] | None:
    """Decode the first complete frame in ``buffer``.

    Returns ``(value, consumed)`` or ``None`` when more data is needed.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    (length,) = _HEADER.unpack_from(buffer, 0)
    if max_frame_bytes is not None and length > max_frame_bytes:
        raise FrameLengthError(length, max_frame_bytes)
    end = HEADER_SIZE + length
    if len(buffer) < end:
        return None
    raw = bytes(buffer[HEADER_SIZE:end])
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FramePayloadError(end, f"payload is not UTF-8: {exc}") from exc
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise FramePayloadError(end, f"payload is not JSON: {exc}", text) from exc
    return value, end


class FrameDemultiplexer:
    """Accumulates stdin bytes and dispatches decoded messages in arrival order."""

    def __init__(
        self,
        on_message: Callable[[Any], None],
        *,
        on_invalid: Callable[[FramePayloadError], None] | None = None,
        max_frame_bytes: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._on_message = on_message
        self._on_invalid = on_invalid
        self._max_frame_bytes = max_frame_bytes
        self._log = logger or _LOGGER
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> int:
        """Append ``chunk`` and dispatch every complete frame. Returns the number dispatched."""
        self._buffer.extend(chunk)
        dispatched = 0
        try:
            while True:
                try:
                    decoded = try_decode_one(self._buffer, max_frame_bytes=self._max_frame_bytes)
                except FramePayloadError as exc:
                    del self._buffer[: exc.consumed]
                    self._log.error("Failed to parse message JSON: %s. Content: %r", exc, exc.content)
                    if self._on_invalid is not None:
                        self._on_invalid(exc)
                    continue
                if decoded is None:
                    break
                value, consumed = decoded
                del self._buffer[:consumed]
                self._on_message(value)
                dispatched += 1
        except Exception as exc:  # noqa: BLE001
            # Offsets are unreliable past this point; drop everything buffered.
            self._log.error("Error processing message buffer: %s (discarding %d bytes)", exc, len(self._buffer))
            self._buffer.clear()
        return dispatched


__all__ = [
    "HEADER_SIZE",
    "FrameDemultiplexer",
    "FrameEncodeError",
    "FrameError",
    "FrameLengthError",
    "FramePayloadError",
    "encode_frame",
    "try_decode_one",
]
