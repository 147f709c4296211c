from __future__ import annotations

from mcp_servers.web_browser.config import TransportConfig
from mcp_servers.web_browser.socket_address import SocketAddress


def test_defaults() -> None:
    cfg = TransportConfig.from_env({"USER": "alice", "TMPDIR": "/tmp"})
    assert cfg.initial_retry_delay_ms == 500
    assert cfg.max_retry_delay_ms == 10_000
    assert cfg.retry_multiplier == 1.5
    assert cfg.max_queue_size == 100
    assert cfg.request_timeout == 30.0
    assert cfg.ws_port is None
    assert cfg.log_level == "INFO"


def test_env_overrides() -> None:
    cfg = TransportConfig.from_env(
        {
            "WEB_BROWSER_MCP_SOCKET": "/run/wb.sock",
            "WEB_BROWSER_RETRY_INITIAL_MS": "100",
            "WEB_BROWSER_RETRY_MAX_MS": "2000",
            "WEB_BROWSER_MAX_QUEUE": "5",
            "WEB_BROWSER_REQUEST_TIMEOUT": "2.5",
            "WEB_BROWSER_MCP_WS_HOST": "0.0.0.0",
            "WEB_BROWSER_MCP_WS_PORT": "3001",
            "WEB_BROWSER_LOG_LEVEL": "debug",
        }
    )
    assert cfg.address == SocketAddress.unix("/run/wb.sock")
    assert cfg.initial_retry_delay_ms == 100
    assert cfg.max_retry_delay_ms == 2000
    assert cfg.max_queue_size == 5
    assert cfg.request_timeout == 2.5
    assert (cfg.ws_host, cfg.ws_port) == ("0.0.0.0", 3001)
    assert cfg.log_level == "DEBUG"


def test_invalid_values_fall_back() -> None:
    cfg = TransportConfig.from_env(
        {
            "USER": "alice",
            "WEB_BROWSER_RETRY_INITIAL_MS": "soon",
            "WEB_BROWSER_REQUEST_TIMEOUT": "-1",
            "WEB_BROWSER_MCP_WS_PORT": "abc",
            "WEB_BROWSER_LOG_LEVEL": "chatty",
        }
    )
    assert cfg.initial_retry_delay_ms == 500
    assert cfg.request_timeout == 30.0
    assert cfg.ws_port is None
    assert cfg.log_level == "INFO"


def test_max_delay_never_below_initial() -> None:
    cfg = TransportConfig(address=SocketAddress.unix("/tmp/x"), initial_retry_delay_ms=800, max_retry_delay_ms=100)
    assert cfg.max_retry_delay_ms == 800
