#!/usr/bin/env python3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from mcp_servers.web_browser.config import TransportConfig  # noqa: E402
from mcp_servers.web_browser.main import main  # noqa: E402

_cfg = TransportConfig.from_env()
print(
    f"[mcp] socket={_cfg.address.describe()} | "
    f"ws={'off' if not _cfg.ws_port else f'{_cfg.ws_host}:{_cfg.ws_port}'} | "
    f"request_timeout={_cfg.request_timeout:g}s | "
    f"log_level={_cfg.log_level}",
    file=sys.stderr,
)

if __name__ == "__main__":
    main(sys.argv[1:])
