"""Startup tasks for the application."""

import asyncio
import logging
from contextlib import asynccontextmanager

from .aggregation_service import analytics_pool
from .beacon_dispatcher import beacon_dispatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def startup_tasks():
    """Manage startup and shutdown tasks."""
    # Startup
    logger.info("🚀 Starting background services...")
    beacon_dispatcher.start()

    try:
        yield
    finally:
        # Shutdown
        logger.info("🛑 Shutting down background services...")

        # Let queued beacons land before the engine is disposed
        await asyncio.to_thread(beacon_dispatcher.stop, True)
        await asyncio.to_thread(analytics_pool.shutdown)

        if beacon_dispatcher.dropped:
            logger.warning(f"⚠️ {beacon_dispatcher.dropped} beacons were dropped while the queue was full")
        logger.info("✅ Background services stopped")
