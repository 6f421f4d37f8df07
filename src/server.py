"""Background runner for ridestream.

Starts change detection, the dispatch worker pool and the periodic ride
scans, and runs until interrupted.

Usage:
    python src/server.py                  # Everything
    python src/server.py --no-scans       # Skip pickup reminders and delay detection
    python src/server.py --log-level DEBUG
"""

import argparse
import asyncio
import contextlib
import signal

import structlog
from runtime import build_runtime
from shared.settings import get_settings
from shared.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


async def run(scans: bool = True):
    runtime = build_runtime(get_settings())
    await runtime.setup()
    await runtime.start(scans=scans)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await runtime.stop()


def main():
    parser = argparse.ArgumentParser(description="Ridestream background runner")
    parser.add_argument("--no-scans", action="store_true", help="Do not run the periodic ride scans")
    parser.add_argument("--log-level", help="Override the configured log level")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, settings.log_json)

    asyncio.run(run(scans=not args.no_scans))


if __name__ == "__main__":
    main()
