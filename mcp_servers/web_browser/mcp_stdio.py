"""MCP server on stdio.

JSON-RPC 2.0, one message per line. Tool calls are not interpreted here: the
tool name and arguments are handed to the backend's `execute()` as-is.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from .contract import initialize_result, select_protocol
from .types import ToolResult

logger = logging.getLogger("mcp.web_browser.mcp")


class ToolBackend(Protocol):
    async def execute(self, tool: str, args: dict[str, Any] | None = None) -> ToolResult: ...


class McpServer:
    """Stdio MCP front-end routing `tools/call` to a backend."""

    def __init__(
        self,
        backend: ToolBackend,
        *,
        write_message: Callable[[dict[str, Any]], None],
        tools: list[dict[str, Any]] | None = None,
    ) -> None:
        self.backend = backend
        self._write = write_message
        self.tools = list(tools or [])
        self._calls: set[asyncio.Task[None]] = set()

    def _reply(self, request_id: Any, result: dict[str, Any]) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _reply_error(self, request_id: Any, code: int, message: str) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        self._reply(request_id, initialize_result(select_protocol(requested)))

    def handle_list_tools(self, request_id: Any) -> None:
        self._reply(request_id, {"tools": self.tools})

    async def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        logger.info("tool=%s args=%s", name, sorted(arguments))
        if not name:
            result = ToolResult.failure("Missing tool name")
        else:
            try:
                result = await self.backend.execute(name, arguments)
            except Exception as exc:
                logger.exception("tool_call_failed")
                result = ToolResult.failure(str(exc))
        self._reply(request_id, {"content": result.to_content_list(), "isError": not result.success})

    async def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch one JSON-RPC message; tool calls are awaited to completion."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}
        if not isinstance(params, dict):
            params = {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif method is not None and str(method).startswith("notifications/"):
            return
        elif method == "tools/list":
            self.handle_list_tools(request_id)
        elif method == "tools/call":
            name = params.get("name")
            arguments = params.get("arguments")
            await self.handle_call_tool(request_id, str(name or ""), arguments if isinstance(arguments, dict) else {})
        elif method == "ping":
            self._reply(request_id, {})
        else:
            self._reply_error(request_id, -32601, f"Method {method} not found")

    def _spawn(self, message: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self.dispatch(message))
        self._calls.add(task)
        task.add_done_callback(self._calls.discard)

    async def serve(self, reader: asyncio.StreamReader) -> None:
        """Read requests until EOF. Tool calls run concurrently."""
        try:
            while True:
                line = await _read_line(reader)
                if line is None:
                    logger.warning("dropped request line longer than the read limit")
                    self._reply_error(None, -32700, "Parse error: message too large")
                    continue
                if not line:
                    return
                line = line.strip()
                if not line:
                    continue
                try:
                    message = json.loads(line.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    self._reply_error(None, -32700, "Parse error")
                    continue
                if not isinstance(message, dict):
                    self._reply_error(None, -32600, "Invalid Request")
                    continue
                if message.get("method") == "tools/call":
                    self._spawn(message)
                else:
                    await self.dispatch(message)
        finally:
            for task in list(self._calls):
                task.cancel()
            for task in list(self._calls):
                with contextlib.suppress(asyncio.CancelledError):
                    await task


async def _read_line(reader: asyncio.StreamReader) -> bytes | None:
    """Next line (b"" at EOF), or None when the line overran the reader limit and was discarded."""
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        return exc.partial
    except asyncio.LimitOverrunError as exc:
        await _discard_line(reader, exc.consumed)
        return None


async def _discard_line(reader: asyncio.StreamReader, consumed: int) -> None:
    # Overrun leaves the buffer intact; drop it chunk by chunk up to and including the newline.
    while True:
        try:
            await reader.readexactly(consumed)
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as exc:
            consumed = exc.consumed
        except asyncio.IncompleteReadError:
            return


def stdout_line_writer(writer: asyncio.StreamWriter) -> Callable[[dict[str, Any]], None]:
    def _write(payload: dict[str, Any]) -> None:
        writer.write((json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8"))

    return _write


__all__ = ["McpServer", "ToolBackend", "stdout_line_writer"]
