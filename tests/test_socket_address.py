from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from mcp_servers.web_browser import socket_address
from mcp_servers.web_browser.errors import BridgeConnectionError
from mcp_servers.web_browser.socket_address import (
    DEFAULT_TCP_PORT,
    SocketAddress,
    resolve_socket_address,
    sanitize_user,
)


def test_unix_default_uses_temp_dir_and_user() -> None:
    addr = resolve_socket_address({"USER": "alice", "TMPDIR": "/var/tmp/"}, platform="linux")
    assert addr.is_unix
    assert addr.path == str(Path("/var/tmp") / "web-browser-alice")


def test_unix_default_falls_back_to_tmp() -> None:
    addr = resolve_socket_address({}, platform="darwin", user="bob")
    assert addr.path == str(Path("/tmp") / "web-browser-bob")


def test_explicit_arguments_win_over_environment() -> None:
    addr = resolve_socket_address({"USER": "alice", "TMPDIR": "/x"}, platform="linux", user="carol", temp_dir="/y")
    assert addr.path == str(Path("/y") / "web-browser-carol")


def test_socket_override() -> None:
    addr = resolve_socket_address({"WEB_BROWSER_MCP_SOCKET": "/run/wb.sock", "USER": "alice"}, platform="linux")
    assert addr == SocketAddress.unix("/run/wb.sock")


def test_windows_uses_loopback_tcp() -> None:
    addr = resolve_socket_address({}, platform="win32")
    assert not addr.is_unix
    assert (addr.host, addr.port) == ("127.0.0.1", DEFAULT_TCP_PORT)
    assert addr.describe() == f"127.0.0.1:{DEFAULT_TCP_PORT}"


def test_windows_port_override_and_invalid_values() -> None:
    assert resolve_socket_address({"WEB_BROWSER_MCP_PORT": "50001"}, platform="win32").port == 50001
    assert resolve_socket_address({"WEB_BROWSER_MCP_PORT": "nope"}, platform="win32").port == DEFAULT_TCP_PORT
    assert resolve_socket_address({"WEB_BROWSER_MCP_PORT": "70000"}, platform="win32").port == DEFAULT_TCP_PORT


def test_resolution_is_deterministic() -> None:
    env = {"USER": "dave", "TMPDIR": "/tmp"}
    assert resolve_socket_address(env, platform="linux") == resolve_socket_address(env, platform="linux")


def test_sanitize_user() -> None:
    assert sanitize_user("alice") == "alice"
    assert sanitize_user("DOMAIN\\John Smith") == "DOMAIN-John-Smith"
    assert sanitize_user("../../etc") == "etc"
    assert sanitize_user("") == "default"
    assert sanitize_user(None) == "default"
    assert len(sanitize_user("x" * 200)) == 48


def test_unix_address_without_unix_socket_support(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(socket_address, "socket", SimpleNamespace())

    with pytest.raises(BridgeConnectionError, match="not available"):
        asyncio.run(socket_address.open_socket_connection(SocketAddress.unix("/tmp/web-browser-x")))
