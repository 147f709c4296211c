"""
Web Browser MCP entry point.

    web-browser              # MCP daemon: MCP on stdio + bridge socket server
    web-browser mcp          # same, explicit
    web-browser bridge       # native messaging bridge (Chrome spawns this)
    web-browser install      # register the native messaging host with Chrome
    web-browser uninstall
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from .config import TransportConfig
from .daemon import BridgeConnectionManager, BridgeSocketServer
from .mcp_stdio import McpServer, stdout_line_writer
from .native_host import configure_logging, open_stdio_streams, run_bridge
from .native_host_installer import install_native_host, uninstall_native_host
from .websocket_transport import WebSocketTransport

logger = logging.getLogger("mcp.web_browser")

_MCP_LINE_LIMIT = 16 * 1024 * 1024


async def run_daemon(config: TransportConfig) -> int:
    """Serve MCP on stdio and accept bridge connections until stdin closes or a signal arrives."""
    loop = asyncio.get_running_loop()
    manager = BridgeConnectionManager(request_timeout=config.request_timeout)
    bridge_server = BridgeSocketServer(manager, config.address)
    await bridge_server.start()

    ws_transport: WebSocketTransport | None = None
    if config.ws_port:
        ws_transport = WebSocketTransport(manager, host=config.ws_host, port=config.ws_port)
        await ws_transport.start()

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    stdin, stdout = await open_stdio_streams(limit=_MCP_LINE_LIMIT)
    server = McpServer(manager, write_message=stdout_line_writer(stdout))
    serve_task = loop.create_task(server.serve(stdin))
    stop_task = loop.create_task(stop.wait())
    try:
        await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        logger.info("daemon shutting down")
        for task in (serve_task, stop_task):
            task.cancel()
        for outcome in await asyncio.gather(serve_task, stop_task, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.error("mcp stdio loop failed: %s", outcome, exc_info=outcome)
        if ws_transport is not None:
            await ws_transport.close()
        await bridge_server.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="web-browser", description="MCP server for browser automation")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("mcp", help="Run the MCP daemon (default)")
    sub.add_parser("bridge", help="Run as the native messaging bridge (spawned by Chrome)")
    install = sub.add_parser("install", help="Install the native messaging host manifest")
    install.add_argument(
        "--extension-id",
        action="append",
        dest="extension_ids",
        default=None,
        help="Allowed extension id (repeatable)",
    )
    sub.add_parser("uninstall", help="Remove the native messaging host manifest")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    command = args.command or "mcp"
    config = TransportConfig.from_env()
    configure_logging(config)

    if command == "install":
        report = install_native_host(extension_ids=args.extension_ids)
        for line in report.wrote:
            print(f"wrote {line}", file=sys.stderr)
        for line in report.errors:
            print(f"error: {line}", file=sys.stderr)
        raise SystemExit(0 if report.ok else 1)

    if command == "uninstall":
        report = uninstall_native_host()
        for line in report.removed:
            print(f"removed {line}", file=sys.stderr)
        for line in report.errors:
            print(f"error: {line}", file=sys.stderr)
        raise SystemExit(0 if report.ok else 1)

    runner = run_bridge(config) if command == "bridge" else run_daemon(config)
    try:
        raise SystemExit(asyncio.run(runner))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
