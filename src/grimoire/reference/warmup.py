"""
Periodic cache warmup and expiry sweeps.

Core categories are small and foundational: they are fetched one after the
other and any failure propagates. Bulk categories are large and paginated:
they are fetched concurrently and a failure in one is logged without
affecting the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from ..config import Settings
from .cache import ReferenceCache, cache_key
from .client import Open5eClient
from .models import BULK_CATEGORIES, CORE_CATEGORIES, Category

logger = logging.getLogger("grimoire.warmup")

CORE_TTL = 7 * 24 * 3600.0
BULK_TTL = 24 * 3600.0
WARMUP_INTERVAL = 12 * 3600.0
CLEANUP_INTERVAL = 3600.0
WARMUP_LIMIT = 20


@dataclass(frozen=True)
class BulkWarmup:
    """A bulk category and the size of its capped listing key."""
    category: Category
    limit: int = WARMUP_LIMIT


class WarmupScheduler:
    """
    Keeps hot listings cached and expired entries swept.

    `start()` launches two independent tasks: warmup (immediately, then every
    `warmup_interval` seconds) and cleanup (every `cleanup_interval` seconds).
    Both loops log failures and keep running until `stop()`.
    """

    def __init__(
        self,
        client: Open5eClient,
        cache: ReferenceCache,
        core_categories: Iterable[Category] = CORE_CATEGORIES,
        bulk_categories: Iterable[BulkWarmup] | None = None,
        core_ttl: float = CORE_TTL,
        bulk_ttl: float = BULK_TTL,
        warmup_interval: float = WARMUP_INTERVAL,
        cleanup_interval: float = CLEANUP_INTERVAL,
    ):
        self.client = client
        self.cache = cache
        self.core_categories = tuple(core_categories)
        self.bulk_categories = (
            tuple(bulk_categories)
            if bulk_categories is not None
            else tuple(BulkWarmup(category) for category in BULK_CATEGORIES)
        )
        self.core_ttl = core_ttl
        self.bulk_ttl = bulk_ttl
        self.warmup_interval = warmup_interval
        self.cleanup_interval = cleanup_interval
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Open5eClient,
        cache: ReferenceCache,
    ) -> "WarmupScheduler":
        return cls(
            client,
            cache,
            bulk_categories=[
                BulkWarmup(category, settings.warmup_limit) for category in BULK_CATEGORIES
            ],
            core_ttl=settings.core_ttl,
            bulk_ttl=settings.bulk_ttl,
            warmup_interval=settings.warmup_interval,
            cleanup_interval=settings.cleanup_interval,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    async def warmup(self) -> dict[Category, BaseException]:
        """
        Populate the cache for core and bulk categories.

        Returns:
            Bulk categories that failed, mapped to their error

        Raises:
            UpstreamError: If any core category fails
        """
        logger.info("Starting Open5e cache warmup")

        for category in self.core_categories:
            records = await self.client.fetch_all(category)
            self.cache.set(cache_key(category), category, records, self.core_ttl)
            logger.info(f"Warmed {len(records)} {category.value}")

        outcomes = await asyncio.gather(
            *(self._warm_bulk(target) for target in self.bulk_categories),
            return_exceptions=True,
        )

        failures: dict[Category, BaseException] = {}
        for target, outcome in zip(self.bulk_categories, outcomes):
            if isinstance(outcome, BaseException):
                failures[target.category] = outcome
                logger.error(f"Failed to warm {target.category.value}: {outcome}")

        warmed = len(self.bulk_categories) - len(failures)
        logger.info(
            f"Cache warmup complete: {len(self.core_categories)} core, "
            f"{warmed}/{len(self.bulk_categories)} bulk categories"
        )
        return failures

    async def _warm_bulk(self, target: BulkWarmup) -> None:
        records = await self.client.fetch_all(target.category)
        self.cache.set(
            cache_key(target.category, limit=target.limit),
            target.category,
            records[: target.limit],
            self.bulk_ttl,
        )
        self.cache.set(cache_key(target.category), target.category, records, self.bulk_ttl)
        logger.info(f"Warmed {len(records)} {target.category.value}")

    def clear_expired(self) -> int:
        return self.cache.clear_expired()

    async def reset_cache(self) -> dict[Category, BaseException]:
        """Wipe the cache, then warm it again before returning."""
        logger.info("Resetting Open5e cache")
        self.cache.clear_all()
        return await self.warmup()

    # =========================================================================
    # Scheduling
    # =========================================================================

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Launch the warmup and cleanup loops on the running event loop."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._warmup_loop(), name="open5e-warmup"),
            asyncio.create_task(self._cleanup_loop(), name="open5e-cleanup"),
        ]
        logger.info(
            f"Scheduler started (warmup every {self.warmup_interval:.0f}s, "
            f"cleanup every {self.cleanup_interval:.0f}s)"
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")

    async def _warmup_loop(self) -> None:
        while True:
            try:
                await self.warmup()
            except Exception as e:
                logger.error(f"Cache warmup failed: {e}")
            await asyncio.sleep(self.warmup_interval)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.clear_expired()
            except Exception as e:
                logger.error(f"Cache cleanup failed: {e}")


__all__ = [
    "BulkWarmup",
    "WarmupScheduler",
]
