"""WebSocket front-end for tool calls.

Clients exchange JSON text messages:

    -> {"type": "request", "id": 1, "tool": "navigate", "args": {...}}
    <- {"type": "response", "id": 1, "result": {"success": true, "data": ...}}
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any

from .contract import SERVER_INFO
from .mcp_stdio import ToolBackend

_LOGGER = logging.getLogger("mcp.web_browser.websocket")
_MAX_MESSAGE_BYTES = 2_000_000


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The WebSocket transport requires the 'websockets' Python package. "
            "Install it (pip install websockets) or unset WEB_BROWSER_MCP_WS_PORT."
        ) from exc


class WebSocketTransport:
    def __init__(
        self,
        backend: ToolBackend,
        *,
        host: str = "127.0.0.1",
        port: int = 3001,
        ping_interval: float | None = 30.0,
    ) -> None:
        self.backend = backend
        self.host = host
        self.port = int(port)
        self.ping_interval = ping_interval
        self._server: Any | None = None
        self._clients: dict[str, Any] = {}

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        if self._server is not None:
            return
        websockets = _import_websockets()
        self._server = await websockets.serve(
            self._handler,
            self.host,
            self.port,
            max_size=_MAX_MESSAGE_BYTES,
            ping_interval=self.ping_interval,
        )
        sockets = getattr(self._server, "sockets", None) or []
        if sockets:
            self.port = int(sockets[0].getsockname()[1])
        _LOGGER.info("WebSocket transport listening on ws://%s:%s", self.host, self.port)

    async def close(self) -> None:
        server = self._server
        self._server = None
        if server is None:
            return
        for ws in list(self._clients.values()):
            with contextlib.suppress(Exception):
                await ws.close(code=1001, reason="Server shutting down")
        self._clients.clear()
        server.close()
        with contextlib.suppress(Exception):
            await server.wait_closed()

    async def _send(self, ws: Any, payload: dict[str, Any]) -> None:
        with contextlib.suppress(Exception):
            await ws.send(json.dumps(payload, ensure_ascii=False))

    async def _handler(self, ws: Any) -> None:
        websockets = _import_websockets()
        client_id = str(uuid.uuid4())
        self._clients[client_id] = ws
        tasks: set[asyncio.Task[None]] = set()
        try:
            await self._send(ws, {"type": "connected", "clientId": client_id, "serverInfo": SERVER_INFO})
            async for raw_msg in ws:
                try:
                    msg = json.loads(raw_msg)
                except (TypeError, ValueError):
                    continue
                if not isinstance(msg, dict):
                    continue
                mtype = msg.get("type")
                if mtype == "ping":
                    await self._send(ws, {"type": "pong", "id": msg.get("id")})
                elif mtype == "request":
                    task = asyncio.get_running_loop().create_task(self._handle_request(ws, msg))
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)
                else:
                    await self._send(
                        ws, {"type": "error", "id": msg.get("id"), "error": f"Unknown message type: {mtype}"}
                    )
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._clients.pop(client_id, None)
            for task in list(tasks):
                task.cancel()

    async def _handle_request(self, ws: Any, msg: dict[str, Any]) -> None:
        req_id = msg.get("id")
        tool = str(msg.get("tool") or "").strip()
        if not tool:
            await self._send(ws, {"type": "error", "id": req_id, "error": "Missing tool"})
            return
        args = msg.get("args")
        result = await self.backend.execute(tool, args if isinstance(args, dict) else {})
        await self._send(ws, {"type": "response", "id": req_id, "result": result.to_dict()})


__all__ = ["WebSocketTransport"]
