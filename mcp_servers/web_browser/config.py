from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .socket_address import SocketAddress, resolve_socket_address

DEFAULT_INITIAL_RETRY_DELAY_MS = 500
DEFAULT_MAX_RETRY_DELAY_MS = 10_000
DEFAULT_RETRY_MULTIPLIER = 1.5
DEFAULT_MAX_QUEUE_SIZE = 100
DEFAULT_REQUEST_TIMEOUT = 30.0


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(str(env.get(key) or default).strip())
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(str(env.get(key) or default).strip())
    except ValueError:
        return default


@dataclass
class TransportConfig:
    address: SocketAddress = field(default_factory=resolve_socket_address)
    initial_retry_delay_ms: float = DEFAULT_INITIAL_RETRY_DELAY_MS
    max_retry_delay_ms: float = DEFAULT_MAX_RETRY_DELAY_MS
    retry_multiplier: float = DEFAULT_RETRY_MULTIPLIER
    max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    ws_host: str = "127.0.0.1"
    ws_port: int | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.initial_retry_delay_ms = max(1.0, float(self.initial_retry_delay_ms))
        self.max_retry_delay_ms = max(self.initial_retry_delay_ms, float(self.max_retry_delay_ms))
        self.retry_multiplier = max(1.0, float(self.retry_multiplier))
        self.max_queue_size = max(0, int(self.max_queue_size))
        if self.request_timeout <= 0:
            self.request_timeout = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TransportConfig:
        env = os.environ if env is None else env
        ws_port_raw = str(env.get("WEB_BROWSER_MCP_WS_PORT") or "").strip()
        ws_port = _env_int(env, "WEB_BROWSER_MCP_WS_PORT", 0) if ws_port_raw else 0
        level = str(env.get("WEB_BROWSER_LOG_LEVEL") or "INFO").strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            level = "INFO"
        return cls(
            address=resolve_socket_address(env),
            initial_retry_delay_ms=_env_int(env, "WEB_BROWSER_RETRY_INITIAL_MS", DEFAULT_INITIAL_RETRY_DELAY_MS),
            max_retry_delay_ms=_env_int(env, "WEB_BROWSER_RETRY_MAX_MS", DEFAULT_MAX_RETRY_DELAY_MS),
            max_queue_size=_env_int(env, "WEB_BROWSER_MAX_QUEUE", DEFAULT_MAX_QUEUE_SIZE),
            request_timeout=_env_float(env, "WEB_BROWSER_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            ws_host=str(env.get("WEB_BROWSER_MCP_WS_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            ws_port=ws_port if ws_port > 0 else None,
            log_level=level,
        )
