from __future__ import annotations

import asyncio
import json
import os
import shutil
import struct
import sys
import tempfile
from pathlib import Path
from typing import Any

import pytest

from mcp_servers.web_browser.daemon import BridgeConnectionManager, BridgeSocketServer
from mcp_servers.web_browser.socket_address import SocketAddress

ROOT = Path(__file__).resolve().parents[1]

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="unix sockets only")


async def _read_frame(stream: asyncio.StreamReader, *, timeout: float = 5.0) -> dict[str, Any]:
    header = await asyncio.wait_for(stream.readexactly(4), timeout=timeout)
    (length,) = struct.unpack("<I", header)
    raw = await asyncio.wait_for(stream.readexactly(length), timeout=timeout)
    data = json.loads(raw.decode("utf-8"))
    assert isinstance(data, dict)
    return data


def _frame(msg: dict[str, Any]) -> bytes:
    raw = json.dumps(msg, separators=(",", ":")).encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


async def _read_until(stream: asyncio.StreamReader, predicate) -> dict[str, Any]:
    while True:
        msg = await _read_frame(stream)
        if predicate(msg):
            return msg


async def _spawn_host(socket_path: Path) -> asyncio.subprocess.Process:
    env = dict(os.environ)
    env["WEB_BROWSER_MCP_SOCKET"] = str(socket_path)
    env["WEB_BROWSER_RETRY_INITIAL_MS"] = "20"
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(ROOT), env.get("PYTHONPATH", "")) if p)
    return await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "mcp_servers.web_browser.native_host",
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
        cwd=str(ROOT),
        env=env,
    )


def test_native_host_relays_commands_between_extension_and_daemon() -> None:
    tmp = Path(tempfile.mkdtemp(prefix="wb-"))
    socket_path = tmp / "sock"

    async def _main() -> None:
        manager = BridgeConnectionManager(request_timeout=5.0)
        server = BridgeSocketServer(manager, SocketAddress.unix(socket_path))
        await server.start()
        proc = await _spawn_host(socket_path)
        assert proc.stdin is not None and proc.stdout is not None
        try:
            await _read_until(proc.stdout, lambda m: m == {"type": "bridge_status", "status": "connected"})
            await asyncio.wait_for(manager.connect(), timeout=5.0)

            proc.stdin.write(_frame({"type": "ping"}))
            await proc.stdin.drain()
            assert await _read_until(proc.stdout, lambda m: m.get("type") == "pong") == {
                "type": "pong",
                "status": "connected",
            }

            call = asyncio.get_running_loop().create_task(manager.execute("screenshot", {"tabId": 3}))
            request = await _read_until(proc.stdout, lambda m: m.get("type") == "command_request")
            assert request["command"] == {"id": request["id"], "action": "screenshot", "tabId": 3}

            proc.stdin.write(
                _frame({"type": "command_response", "id": request["id"], "response": {"success": True, "data": "ok"}})
            )
            await proc.stdin.drain()
            result = await asyncio.wait_for(call, timeout=5.0)
            assert result.success is True
            assert result.data == "ok"

            proc.stdin.close()
            assert await asyncio.wait_for(proc.wait(), timeout=5.0) == 0
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            await server.close()

    try:
        asyncio.run(_main())
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_native_host_reports_framing_error_and_exits_nonzero() -> None:
    tmp = Path(tempfile.mkdtemp(prefix="wb-"))

    async def _main() -> None:
        # No daemon listening: the host keeps retrying in the background.
        proc = await _spawn_host(tmp / "sock")
        assert proc.stdin is not None and proc.stdout is not None
        try:
            proc.stdin.write(struct.pack("<I", 0))
            await proc.stdin.drain()
            error = await _read_until(proc.stdout, lambda m: m.get("type") == "error")
            assert "length is 0" in error["error"]
            assert await asyncio.wait_for(proc.wait(), timeout=5.0) == 1
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

    try:
        asyncio.run(_main())
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
