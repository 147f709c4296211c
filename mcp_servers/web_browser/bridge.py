"""Native messaging bridge.

Chrome spawns this process via `connectNative()` and it relays messages:

    Extension <-> (native messaging stdio) <-> Bridge <-> (socket, NDJSON) <-> MCP daemon

The bridge outlives daemon restarts: it reconnects with exponential backoff
and parks outbound messages in a bounded queue while disconnected. Every state
change is reported to the extension as a `bridge_status` message.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any

from .config import TransportConfig
from .errors import BridgeConnectionError, FramingError, InvalidTransitionError
from .ndjson import LineBuffer, encode_line
from .socket_address import SocketAddress, open_socket_connection
from .timers import LoopScheduler, Scheduler, TimerHandle

_LOGGER = logging.getLogger("mcp.web_browser.bridge")
_READ_CHUNK = 64 * 1024


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
}

ConnectionFactory = Callable[[SocketAddress], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class Bridge:
    """Relay between the extension's native-messaging channel and the daemon socket.

    All state (socket, queue, retry timer) lives on the instance and is only
    touched from the event loop, so no locking is needed.
    """

    def __init__(
        self,
        send_to_browser: Callable[[Any], None],
        *,
        config: TransportConfig | None = None,
        open_connection: ConnectionFactory | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._config = config or TransportConfig.from_env()
        self._send_to_browser = send_to_browser
        self._open_connection = open_connection or open_socket_connection
        self._scheduler = scheduler or LoopScheduler()

        self._state = ConnectionState.DISCONNECTED
        self._retry_delay_ms = float(self._config.initial_retry_delay_ms)
        self._retry_handle: TimerHandle | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._socket_task: asyncio.Task[None] | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._queue: deque[Any] = deque()
        self._closing = False
        self.dropped_messages = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_delay_ms(self) -> float:
        return self._retry_delay_ms

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def queued_messages(self) -> list[Any]:
        return list(self._queue)

    # ─────────────────────────────────────────────────────────────────────────
    # State machine
    # ─────────────────────────────────────────────────────────────────────────

    def _transition(self, new_state: ConnectionState) -> None:
        allowed = _TRANSITIONS[self._state]
        if new_state not in allowed:
            raise InvalidTransitionError(f"invalid bridge transition: {self._state.value} -> {new_state.value}")
        _LOGGER.debug("state %s -> %s", self._state.value, new_state.value)
        self._state = new_state
        self._emit_status()

    def _emit_status(self) -> None:
        self._to_browser({"type": "bridge_status", "status": self._state.value})

    def _to_browser(self, message: Any) -> None:
        try:
            self._send_to_browser(message)
        except FramingError as exc:
            _LOGGER.warning("dropping message for extension: %s", exc)
        except OSError as exc:
            # stdout is gone (browser closed the port); the read loop will see EOF.
            _LOGGER.debug("native messaging write failed: %s", exc)

    # ─────────────────────────────────────────────────────────────────────────
    # Connection management
    # ─────────────────────────────────────────────────────────────────────────

    def connect(self) -> None:
        """Start a connection attempt now unless one is already in flight."""
        if self._closing or self._state is not ConnectionState.DISCONNECTED:
            return
        self._cancel_retry()
        self._transition(ConnectionState.CONNECTING)
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())

    async def _connect(self) -> None:
        address = self._config.address
        try:
            reader, writer = await self._open_connection(address)
        except asyncio.CancelledError:
            if self._state is ConnectionState.CONNECTING:
                self._transition(ConnectionState.DISCONNECTED)
            raise
        except (BridgeConnectionError, OSError) as exc:
            _LOGGER.debug("connect to %s failed: %s", address.describe(), exc)
            self._transition(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()
            return
        except Exception:
            _LOGGER.exception("unexpected error connecting to %s", address.describe())
            self._transition(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()
            return

        if self._closing:
            writer.close()
            return

        self._writer = writer
        self._retry_delay_ms = float(self._config.initial_retry_delay_ms)
        self._transition(ConnectionState.CONNECTED)
        _LOGGER.info("connected to MCP server at %s", address.describe())
        self._flush_queue()
        self._socket_task = asyncio.get_running_loop().create_task(self._socket_loop(reader, writer))

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        self._cancel_retry()
        delay_ms = self._retry_delay_ms
        self._retry_delay_ms = min(delay_ms * self._config.retry_multiplier, self._config.max_retry_delay_ms)
        _LOGGER.debug("reconnecting in %.0f ms", delay_ms)
        self._retry_handle = self._scheduler.call_later(delay_ms / 1000.0, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self.connect()

    def _cancel_retry(self) -> None:
        handle = self._retry_handle
        self._retry_handle = None
        if handle is not None:
            handle.cancel()

    def _on_socket_closed(self, writer: asyncio.StreamWriter) -> None:
        if self._writer is not writer:
            return
        self._writer = None
        with contextlib.suppress(Exception):
            writer.close()
        if self._state is ConnectionState.CONNECTED:
            _LOGGER.info("MCP server connection closed")
            self._transition(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Outbound (extension -> daemon)
    # ─────────────────────────────────────────────────────────────────────────

    def send(self, message: Any) -> None:
        """Forward one message from the extension, or queue it while disconnected."""
        if self._handle_control(message):
            return
        if self._state is ConnectionState.CONNECTED and self._writer is not None:
            self._writer.write(encode_line(message))
            return
        self._enqueue(message)
        if self._state is ConnectionState.DISCONNECTED and self._retry_handle is None:
            self.connect()

    def _enqueue(self, message: Any) -> None:
        if len(self._queue) >= self._config.max_queue_size:
            self.dropped_messages += 1
            _LOGGER.debug("outbound queue full, dropping message (%d dropped)", self.dropped_messages)
            return
        self._queue.append(message)

    def _flush_queue(self) -> None:
        writer = self._writer
        if writer is None:
            return
        while self._queue:
            writer.write(encode_line(self._queue.popleft()))

    def _handle_control(self, message: Any) -> bool:
        if not isinstance(message, dict):
            return False
        mtype = message.get("type")
        if mtype == "ping":
            self._to_browser({"type": "pong", "status": self._state.value})
            return True
        if mtype == "bridge_status":
            self._emit_status()
            return True
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound (daemon -> extension)
    # ─────────────────────────────────────────────────────────────────────────

    async def _socket_loop(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        lines = LineBuffer()
        try:
            while True:
                chunk = await reader.read(_READ_CHUNK)
                if not chunk:
                    break
                for message in lines.feed(chunk):
                    self._to_browser(message)
        except OSError as exc:
            _LOGGER.debug("MCP server socket error: %s", exc)
        self._on_socket_closed(writer)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Cancel the retry timer and any in-flight connect, then drop the socket."""
        self._closing = True
        self._cancel_retry()

        for task in (self._connect_task, self._socket_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._connect_task = None
        self._socket_task = None

        writer = self._writer
        self._writer = None
        if writer is not None:
            with contextlib.suppress(Exception):
                writer.close()
        if self._state is not ConnectionState.DISCONNECTED:
            self._transition(ConnectionState.DISCONNECTED)

    def report_error(self, message: str) -> None:
        self._to_browser({"type": "error", "error": str(message)})

    async def run(self, messages: AsyncIterator[Any]) -> int:
        """Pump extension messages until the channel closes.

        Returns 0 when the extension closed the channel and 1 after a hard read
        error, which is reported to the extension once as an `error` message.
        """
        self.connect()
        failure: str | None = None
        try:
            async for message in messages:
                self.send(message)
        except (FramingError, OSError) as exc:
            failure = f"Native messaging error: {exc}"
            _LOGGER.error("%s", failure)
        finally:
            await self.close()

        if failure is not None:
            self.report_error(failure)
            return 1
        return 0


__all__ = ["Bridge", "ConnectionState"]
