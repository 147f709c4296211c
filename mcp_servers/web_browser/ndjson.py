"""Newline-delimited JSON framing used on the bridge <-> daemon socket."""

from __future__ import annotations

import json
import logging
from typing import Any

from .errors import ProtocolParseError

_LOGGER = logging.getLogger("mcp.web_browser.ndjson")


def encode_line(message: Any) -> bytes:
    return (json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


def decode_line(line: bytes) -> Any:
    try:
        return json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolParseError(f"invalid JSON line: {exc}") from exc


class LineBuffer:
    """Accumulates socket bytes and yields one parsed value per complete line.

    Malformed lines are dropped so one corrupt line never ends a session.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.dropped_lines = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[Any]:
        self._buffer.extend(chunk)
        messages: list[Any] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            line = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            if not line.strip():
                continue
            try:
                messages.append(decode_line(line))
            except ProtocolParseError as exc:
                self.dropped_lines += 1
                _LOGGER.debug("dropped malformed line (%d total): %s", self.dropped_lines, exc)
        return messages

    def clear(self) -> None:
        self._buffer.clear()
