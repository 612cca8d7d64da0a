"""Clawdbot node entry point.

Usage:
    python -m clawdbot_node [--config CONFIG_PATH] [--gateway URL]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from .config import NodeConfig
from .node import NodeAgent


def _find_config() -> str | None:
    candidate = Path.home() / ".clawdbot-node" / "config.json"
    return str(candidate) if candidate.exists() else None


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Clawdbot Node")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.json (default: ~/.clawdbot-node/config.json)",
    )
    parser.add_argument(
        "--gateway",
        default=None,
        help="Gateway WebSocket URL (overrides config)",
    )
    parser.add_argument(
        "--state-dir",
        default=None,
        help="Directory holding the device key and session token",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log = logging.getLogger(__name__)

    config_path = args.config or _find_config()
    if config_path:
        config = NodeConfig.load(config_path)
        log.info("Loaded config from %s", config_path)
    else:
        config = NodeConfig()
        log.warning("No config found — using defaults")

    config.apply_env()
    if args.gateway:
        config.gateway_url = args.gateway
    if args.state_dir:
        config.state_dir = args.state_dir

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    agent = NodeAgent(config)

    def _shutdown(sig: int) -> None:
        log.info("Received signal %d — shutting down", sig)
        loop.create_task(agent.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(agent.start(connect=True))
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(agent.gateway.disconnect())
        loop.close()


if __name__ == "__main__":
    main()
