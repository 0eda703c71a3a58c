"""Periodic maintenance sweep for dead links and old click history."""

import asyncio
import datetime
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from prometheus_client import Counter

from shortlinks.cache import RedisLinkCache
from shortlinks.config import Settings
from shortlinks.database import async_session
from shortlinks.errors import CacheError
from shortlinks.repository import SQLLinkStore
from shortlinks.urls import utcnow

__all__ = ["MaintenanceSweeper", "SweepResult", "get_maintenance_sweeper", "sql_store_factory"]

SWEPT_LINKS_TOTAL = Counter(
    "shortlinks_swept_links_total",
    "Expired and deactivated links removed by the maintenance sweep",
)
PURGED_CLICKS_TOTAL = Counter(
    "shortlinks_purged_clicks_total",
    "Click events removed by the retention sweep",
)


@dataclass
class SweepResult:
    removed_codes: list[str] = field(default_factory=list)
    purged_clicks: int = 0


@asynccontextmanager
async def sql_store_factory():
    async with async_session() as session:
        yield SQLLinkStore(session)


class MaintenanceSweeper:
    """Deletes links that are both expired and deactivated.

    Links that are merely expired stay in place so owners can reactivate or
    extend them. When ``CLICK_RETENTION_DAYS`` is positive, click events older
    than the window are purged in the same cycle.
    """

    def __init__(self, store_factory, cache: RedisLinkCache, settings: Settings, logger: logging.Logger) -> None:
        self.store_factory = store_factory
        self.cache = cache
        self.settings = settings
        self.logger = logger

    async def sweep_once(self, now: datetime.datetime | None = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult()

        async with self.store_factory() as store:
            result.removed_codes = await store.delete_expired_inactive(now)
            if self.settings.CLICK_RETENTION_DAYS > 0:
                cutoff = now - datetime.timedelta(days=self.settings.CLICK_RETENTION_DAYS)
                result.purged_clicks = await store.purge_clicks_before(cutoff)

        for code in result.removed_codes:
            try:
                await self.cache.delete(code)
                await self.cache.forget_count(code)
            except CacheError as e:
                self.logger.error(f"Failed to evict swept link {code}: {e}")

        SWEPT_LINKS_TOTAL.inc(len(result.removed_codes))
        PURGED_CLICKS_TOTAL.inc(result.purged_clicks)
        self.logger.info(
            f"Sweep finished: removed {len(result.removed_codes)} links, purged {result.purged_clicks} clicks"
        )
        return result

    async def run_forever(self, interval_seconds: int, stop_event: asyncio.Event | None = None) -> None:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set."""
        self.logger.info(f"Starting maintenance sweep every {interval_seconds}s")
        stop_event = stop_event or asyncio.Event()

        while not stop_event.is_set():
            try:
                await self.sweep_once()
            except Exception as e:
                self.logger.error(f"Maintenance sweep error: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass


_maintenance_sweeper: MaintenanceSweeper | None = None


def get_maintenance_sweeper(cache: RedisLinkCache, settings: Settings, logger: logging.Logger) -> MaintenanceSweeper:
    """Get the process-wide sweeper, creating it on first use."""
    global _maintenance_sweeper
    if _maintenance_sweeper is None:
        _maintenance_sweeper = MaintenanceSweeper(sql_store_factory, cache, settings, logger)
    return _maintenance_sweeper
