#!/usr/bin/env python3
"""Native-messaging host for the Claude Monitor browser extension.

The browser spawns this process for every message: it reads one framed
request from stdin, writes one framed response to stdout, and exits.
Anything that goes wrong becomes ``{"success": false, "error": ...}``; the
extension is blocked waiting on stdout, so it must always get an answer.

stdout carries the protocol, so logs go to ~/.claude-monitor/host.log.
Set CLAUDE_MONITOR_DEBUG=1 for debug logging.
"""

import logging
import sys
from typing import BinaryIO, Optional

from claude_monitor.config import MonitorConfig
from claude_monitor.database import UsageStore
from claude_monitor.native.protocol import read_message, write_message
from claude_monitor.native.router import MessageRouter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: MonitorConfig) -> None:
    """Log to the data dir; fall back to stderr if that isn't writable."""
    level = logging.DEBUG if config.debug else logging.INFO
    try:
        config.log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(config.log_path, encoding="utf-8")
    except OSError:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)


def handle_stream(
    instream: BinaryIO,
    outstream: BinaryIO,
    config: Optional[MonitorConfig] = None,
) -> dict:
    """Serve exactly one request and return the response that was written."""
    store: Optional[UsageStore] = None
    try:
        config = config or MonitorConfig.from_env()
        store = UsageStore(config.db_path)
        message = read_message(instream)
        response = MessageRouter(store, config).dispatch(message)
    except Exception as e:
        logger.exception("Failed to handle native message")
        response = {"success": False, "error": str(e) or e.__class__.__name__}
    finally:
        if store is not None:
            store.close()

    write_message(outstream, response)
    return response


def main() -> int:
    """Console entry point. Browser-supplied arguments (extension origin,
    parent window handle) are ignored."""
    try:
        config = MonitorConfig.from_env()
    except ValueError as e:
        write_message(sys.stdout.buffer, {"success": False, "error": f"Configuration error: {e}"})
        return 1

    setup_logging(config)
    response = handle_stream(sys.stdin.buffer, sys.stdout.buffer, config)
    return 0 if response.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
