"""Chrome Native Messaging host for Web Browser MCP.

Chrome launches this process when the extension calls `connectNative()`.
stdin/stdout carry native-messaging frames, so logs go to stderr only.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from .bridge import Bridge
from .config import TransportConfig
from .native_messaging import native_message_reader, native_message_writer


async def open_stdio_streams(*, limit: int = 2**16) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)
    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout.buffer)
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


async def run_bridge(config: TransportConfig | None = None) -> int:
    config = config or TransportConfig.from_env()
    stdin, stdout = await open_stdio_streams()
    bridge = Bridge(native_message_writer(stdout), config=config)
    try:
        return await bridge.run(native_message_reader(stdin))
    finally:
        try:
            await stdout.drain()
        except (ConnectionError, OSError):
            pass
        stdout.close()


def configure_logging(config: TransportConfig) -> None:
    level = config.log_level
    if os.environ.get("WEB_BROWSER_BRIDGE_DEBUG") == "1":
        level = "DEBUG"
    # Native messaging requires strict stdout framing. Never write logs to stdout.
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main() -> None:
    config = TransportConfig.from_env()
    configure_logging(config)
    try:
        raise SystemExit(asyncio.run(run_bridge(config)))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
