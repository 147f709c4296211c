"""Daemon side of the extension bridge.

The daemon listens on the socket the bridge dials and keeps exactly one bridge
attached at a time. Tool calls are written as `command_request` lines and
matched to `command_response` lines by request id.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import DEFAULT_REQUEST_TIMEOUT
from .errors import (
    BridgeDisconnectedError,
    ConnectionClosedError,
    RequestTimeoutError,
    TransportError,
)
from .ndjson import LineBuffer, encode_line
from .socket_address import SocketAddress
from .timers import LoopScheduler, Scheduler, TimerHandle
from .types import ToolResult

_LOGGER = logging.getLogger("mcp.web_browser.daemon")
_READ_CHUNK = 64 * 1024

NOT_CONNECTED_MESSAGE = "Extension not connected. Make sure the Chrome extension is running."


@dataclass(slots=True)
class PendingRequest:
    id: str
    future: asyncio.Future[ToolResult]
    timeout_handle: TimerHandle | None = None

    def settle(self, *, result: ToolResult | None = None, error: BaseException | None = None) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
        if self.future.done():
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result if result is not None else ToolResult.failure("Unknown error"))


class BridgeConnectionManager:
    """Routes tool calls to the extension through the attached bridge.

    A new inbound connection always replaces the previous one; requests that
    were waiting on the old connection fail with "Connection closed".
    """

    name = "extension"

    def __init__(self, *, request_timeout: float = DEFAULT_REQUEST_TIMEOUT, scheduler: Scheduler | None = None) -> None:
        self._request_timeout = float(request_timeout)
        self._scheduler = scheduler or LoopScheduler()
        self._writer: asyncio.StreamWriter | None = None
        self._pending: dict[str, PendingRequest] = {}
        self._request_id = 0
        self._connect_waiter: asyncio.Future[None] | None = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_connected(self) -> bool:
        writer = self._writer
        return writer is not None and not writer.is_closing()

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """asyncio server callback: attach the bridge and read until it goes away."""
        self._attach(writer)
        try:
            await self._read_loop(reader)
        finally:
            if self._writer is writer:
                _LOGGER.info("bridge disconnected")
                self._drop_connection(ConnectionClosedError())

    def _attach(self, writer: asyncio.StreamWriter) -> None:
        if self._writer is not None:
            _LOGGER.info("bridge superseded by a new connection")
            self._drop_connection(ConnectionClosedError(), abort=True)
        self._writer = writer
        _LOGGER.info("bridge connected")

        waiter = self._connect_waiter
        self._connect_waiter = None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _drop_connection(self, error: TransportError, *, abort: bool = False) -> None:
        writer = self._writer
        self._writer = None
        if writer is not None:
            # A superseded bridge is cut off without flushing what is still buffered for it.
            transport = getattr(writer, "transport", None) if abort else None
            with contextlib.suppress(Exception):
                if transport is not None:
                    transport.abort()
                else:
                    writer.close()
        self._reject_all(error)

    def _reject_all(self, error: TransportError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.settle(error=error)

    async def connect(self) -> None:
        """Return once a bridge is attached; waits for the next inbound connection otherwise."""
        if self.is_connected():
            return
        if self._connect_waiter is None or self._connect_waiter.done():
            self._connect_waiter = asyncio.get_running_loop().create_future()
        await asyncio.shield(self._connect_waiter)

    async def disconnect(self) -> None:
        self._drop_connection(BridgeDisconnectedError())

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    async def execute(self, tool: str, args: dict[str, Any] | None = None) -> ToolResult:
        """Send one command to the extension and wait for its response.

        Never raises for connection problems: they come back as failed results.
        """
        writer = self._writer
        if writer is None or writer.is_closing():
            return ToolResult.failure(NOT_CONNECTED_MESSAGE)

        self._request_id += 1
        request_id = f"req_{self._request_id}"
        entry = PendingRequest(id=request_id, future=asyncio.get_running_loop().create_future())
        entry.timeout_handle = self._scheduler.call_later(self._request_timeout, lambda: self._on_timeout(request_id))
        self._pending[request_id] = entry

        command = {"id": request_id, "action": tool, **(args or {})}
        writer.write(encode_line({"type": "command_request", "id": request_id, "command": command}))

        try:
            return await entry.future
        except TransportError as exc:
            return ToolResult.failure(str(exc))
        finally:
            if self._pending.get(request_id) is entry:
                del self._pending[request_id]
            if entry.timeout_handle is not None:
                entry.timeout_handle.cancel()
                entry.timeout_handle = None

    def _on_timeout(self, request_id: str) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        entry.timeout_handle = None
        _LOGGER.warning("request %s timed out after %.1fs", request_id, self._request_timeout)
        entry.settle(error=RequestTimeoutError())

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound
    # ─────────────────────────────────────────────────────────────────────────

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        lines = LineBuffer()
        try:
            while True:
                chunk = await reader.read(_READ_CHUNK)
                if not chunk:
                    return
                for message in lines.feed(chunk):
                    self._handle_message(message)
        except OSError as exc:
            _LOGGER.debug("bridge socket error: %s", exc)

    def _handle_message(self, message: Any) -> None:
        if not isinstance(message, dict) or message.get("type") != "command_response":
            return
        request_id = message.get("id")
        if not isinstance(request_id, str):
            return
        entry = self._pending.pop(request_id, None)
        if entry is None:
            _LOGGER.debug("ignoring response for unknown request %s", request_id)
            return

        response = message.get("response")
        if isinstance(response, dict) and response.get("success"):
            entry.settle(result=ToolResult.ok(response.get("data")))
            return
        error = response.get("error") if isinstance(response, dict) else None
        entry.settle(result=ToolResult.failure(error if isinstance(error, str) and error else "Unknown error"))


class BridgeSocketServer:
    """Listening socket for bridge connections (Unix socket, or loopback TCP on Windows)."""

    def __init__(self, manager: BridgeConnectionManager, address: SocketAddress) -> None:
        self.manager = manager
        self.address = address
        self._server: asyncio.AbstractServer | None = None

    @property
    def listening(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        if self._server is not None:
            return
        if self.address.is_unix:
            path = Path(str(self.address.path))
            # A daemon that died without cleanup leaves a stale socket behind.
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            self._server = await asyncio.start_unix_server(self.manager.handle_connection, path=str(path))
        else:
            self._server = await asyncio.start_server(
                self.manager.handle_connection, self.address.host, int(self.address.port or 0)
            )
        _LOGGER.info("bridge socket server listening on %s", self.address.describe())

    async def close(self) -> None:
        server = self._server
        self._server = None
        if server is not None:
            server.close()
            await self.manager.disconnect()
            with contextlib.suppress(Exception):
                await asyncio.wait_for(server.wait_closed(), timeout=2.0)
        if self.address.is_unix:
            with contextlib.suppress(FileNotFoundError):
                Path(str(self.address.path)).unlink()

    async def __aenter__(self) -> BridgeSocketServer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["NOT_CONNECTED_MESSAGE", "BridgeConnectionManager", "BridgeSocketServer", "PendingRequest"]
