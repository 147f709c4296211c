from __future__ import annotations

import asyncio
import getpass
import os
import re
import socket
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import BridgeConnectionError

SOCKET_ENV = "WEB_BROWSER_MCP_SOCKET"
PORT_ENV = "WEB_BROWSER_MCP_PORT"
DEFAULT_TCP_HOST = "127.0.0.1"
DEFAULT_TCP_PORT = 49320

_SAFE_USER_RE = re.compile(r"[^a-zA-Z0-9_.-]+")


@dataclass(frozen=True, slots=True)
class SocketAddress:
    kind: str  # "unix" or "tcp"
    path: str | None = None
    host: str = DEFAULT_TCP_HOST
    port: int | None = None

    @classmethod
    def unix(cls, path: str | os.PathLike[str]) -> SocketAddress:
        return cls(kind="unix", path=str(path))

    @classmethod
    def tcp(cls, port: int, host: str = DEFAULT_TCP_HOST) -> SocketAddress:
        return cls(kind="tcp", host=host, port=int(port))

    @property
    def is_unix(self) -> bool:
        return self.kind == "unix"

    def describe(self) -> str:
        if self.is_unix:
            return str(self.path)
        return f"{self.host}:{self.port}"


def sanitize_user(raw: str | None, *, max_len: int = 48) -> str:
    s = str(raw or "").strip()
    if not s:
        return "default"
    s = _SAFE_USER_RE.sub("-", s).strip("-.") or "default"
    return s[: max(8, int(max_len))]


def _effective_user(env: Mapping[str, str]) -> str:
    for key in ("USER", "LOGNAME"):
        raw = env.get(key)
        if isinstance(raw, str) and raw.strip():
            return raw.strip()
    try:
        return getpass.getuser()
    except Exception:  # noqa: BLE001
        return "default"


def _temp_dir(env: Mapping[str, str]) -> str:
    for key in ("TMPDIR", "TEMP", "TMP"):
        raw = env.get(key)
        if isinstance(raw, str) and raw.strip():
            return raw.strip().rstrip("/") or "/"
    return "/tmp"


def _parse_port(raw: str | None) -> int:
    try:
        port = int(str(raw or "").strip())
    except ValueError:
        return DEFAULT_TCP_PORT
    if 0 < port < 65536:
        return port
    return DEFAULT_TCP_PORT


def resolve_socket_address(
    env: Mapping[str, str] | None = None,
    *,
    platform: str | None = None,
    user: str | None = None,
    temp_dir: str | None = None,
) -> SocketAddress:
    """Resolve where the daemon listens and the bridge dials.

    Pure: reads only its arguments (defaulting to the process environment) and
    never touches the filesystem.
    """
    env = os.environ if env is None else env
    platform = platform or sys.platform

    raw_socket = env.get(SOCKET_ENV)
    if isinstance(raw_socket, str) and raw_socket.strip():
        return SocketAddress.unix(Path(raw_socket.strip()).expanduser())

    if platform == "win32":
        return SocketAddress.tcp(_parse_port(env.get(PORT_ENV)))

    name = sanitize_user(user if user is not None else _effective_user(env))
    base = temp_dir or _temp_dir(env)
    return SocketAddress.unix(Path(base) / f"web-browser-{name}")


async def open_socket_connection(address: SocketAddress) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    if address.is_unix and not hasattr(socket, "AF_UNIX"):
        raise BridgeConnectionError(f"Unix sockets are not available on this platform: {address.describe()}")
    try:
        if address.is_unix:
            return await asyncio.open_unix_connection(str(address.path))
        return await asyncio.open_connection(address.host, int(address.port or DEFAULT_TCP_PORT))
    except OSError as exc:
        raise BridgeConnectionError(f"Failed to connect to MCP server at {address.describe()}: {exc}") from exc


__all__ = [
    "DEFAULT_TCP_PORT",
    "PORT_ENV",
    "SOCKET_ENV",
    "SocketAddress",
    "open_socket_connection",
    "resolve_socket_address",
    "sanitize_user",
]
