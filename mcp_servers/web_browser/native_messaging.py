"""Chrome Native Messaging framing.

Each frame on the extension <-> native host channel is a 4-byte little-endian
uint32 length followed by that many bytes of UTF-8 JSON. Chrome caps a single
message at 1 MiB, so both directions enforce `1 <= length <= MAX_MESSAGE_BYTES`.
"""

from __future__ import annotations

import asyncio
import json
import struct
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from .errors import EndOfStreamError, FramingError, MessageTooLargeError

MAX_MESSAGE_BYTES = 1024 * 1024
_HEADER = struct.Struct("<I")


class ByteSource(Protocol):
    async def readexactly(self, n: int) -> bytes: ...


class ByteSink(Protocol):
    def write(self, data: bytes) -> Any: ...


def encode_native_message(message: Any) -> bytes:
    """Serialize `message` into one complete frame (prefix + payload)."""
    raw = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    if len(raw) > MAX_MESSAGE_BYTES:
        raise MessageTooLargeError(f"Message too large: {len(raw)} bytes (max {MAX_MESSAGE_BYTES})")
    return _HEADER.pack(len(raw)) + raw


def write_native_message(message: Any, output: ByteSink) -> None:
    """Write one frame to `output`.

    Nothing is written when the message is oversized. The prefix is written in
    full before the payload; with a single-threaded caller no other frame can
    land between the two writes.
    """
    frame = encode_native_message(message)
    output.write(frame[: _HEADER.size])
    output.write(frame[_HEADER.size :])
    flush = getattr(output, "flush", None)
    if callable(flush):
        flush()


async def _read_exactly(source: ByteSource, n: int, *, at_frame_start: bool) -> bytes:
    try:
        return await source.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        got = len(exc.partial)
        if got == 0 and at_frame_start:
            raise EndOfStreamError("Stream ended") from None
        raise FramingError(f"Stream ended early: expected {n} bytes, got {got}") from None


async def read_native_message(source: ByteSource) -> Any:
    """Read and decode one frame.

    Raises `EndOfStreamError` when the stream closed cleanly between frames and
    `FramingError` for every other kind of malformed input.
    """
    header = await _read_exactly(source, _HEADER.size, at_frame_start=True)
    (length,) = _HEADER.unpack(header)
    if length == 0:
        raise FramingError("Message length is 0")
    if length > MAX_MESSAGE_BYTES:
        raise MessageTooLargeError(f"Message too large: {length} bytes (max {MAX_MESSAGE_BYTES})")

    raw = await _read_exactly(source, int(length), at_frame_start=False)
    try:
        text = raw.decode("utf-8")
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError):
        preview = raw[:100].decode("utf-8", errors="replace")
        raise FramingError(f"Invalid JSON in native message: {preview}...") from None


async def native_message_reader(source: ByteSource) -> AsyncIterator[Any]:
    """Yield decoded messages until the peer closes the stream.

    A clean EOF ends the iteration silently; any other framing failure
    propagates to the consumer.
    """
    while True:
        try:
            message = await read_native_message(source)
        except EndOfStreamError:
            return
        yield message


def native_message_writer(output: ByteSink) -> Callable[[Any], None]:
    def _write(message: Any) -> None:
        write_native_message(message, output)

    return _write


__all__ = [
    "MAX_MESSAGE_BYTES",
    "ByteSink",
    "ByteSource",
    "encode_native_message",
    "native_message_reader",
    "native_message_writer",
    "read_native_message",
    "write_native_message",
]
