"""Maintenance sweep worker entry point.

Run as a separate process next to the API::

    python -m shortlinks.worker
"""

import asyncio
import logging
import signal
import sys

from shortlinks.cache import RedisLinkCache, close_redis, get_redis
from shortlinks.config import get_settings
from shortlinks.database import close_db
from shortlinks.sweeper import get_maintenance_sweeper


async def main() -> None:
    settings = get_settings()

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logger = logging.getLogger("shortlinks.worker")

    logger.info("Starting maintenance worker")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    sweeper = get_maintenance_sweeper(RedisLinkCache(await get_redis()), settings, logger)

    try:
        await sweeper.run_forever(settings.CLEANUP_INTERVAL_SECONDS, stop_event)
    except Exception as e:
        logger.error(f"Maintenance worker failed: {e}")
        sys.exit(1)
    finally:
        await close_redis()
        await close_db()
        logger.info("Maintenance worker stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
