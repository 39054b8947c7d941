"""
Long-running process for the periodic ingestion jobs.

Usage:
    SCHEDULER_ENABLED=true SCHEDULED_DEPARTMENTS=75,13 python scripts/run_scheduler.py
"""

import asyncio
import logging
import signal
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.logging import setup_logging
from ingestion.scheduler import IngestionScheduler

logger = logging.getLogger(__name__)


async def main() -> int:
    if not settings.SCHEDULER_ENABLED:
        logger.warning("SCHEDULER_ENABLED is false, nothing to do")
        return 0

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    scheduler = IngestionScheduler()
    scheduler.start()
    try:
        await stop.wait()
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(main()))
