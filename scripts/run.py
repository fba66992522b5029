#!/usr/bin/env python3
"""Stage monitor entrypoint — starts the monitor and runs until signalled.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # One heuristic diagnostic sweep, then exit
    python scripts/run.py --diagnose
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.monitor.factory import create_monitor_stack

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the monitor and keep it running until SIGINT/SIGTERM."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    monitor, client = create_monitor_stack(settings)
    await client.connect()

    if args.diagnose:
        try:
            alerts = await monitor.run_diagnostic_sweep()
            logger.info("diagnostic_sweep_complete", alerts=len(alerts))
        finally:
            await client.close()
        return 0

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows

    logger.info("monitor_starting", backend=settings.backend.url)
    await monitor.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("monitor_shutting_down", **monitor.snapshot())
        await monitor.stop()
        if monitor.dispatcher is not None:
            await monitor.dispatcher.close()
        await client.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Pilgrim-flow stage monitor")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default=None, help="Log level override")
    parser.add_argument(
        "--diagnose",
        action="store_true",
        help="Run one heuristic diagnostic sweep and exit",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
