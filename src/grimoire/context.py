"""
Process-wide object graph for the reference subsystem.

Built once at startup and handed to the HTTP app and the MCP server; nothing
in grimoire reaches for module-level client, cache or store instances.
"""

import logging
from dataclasses import dataclass

import httpx

from .config import Settings
from .reference.cache import ReferenceCache, SQLiteCacheBackend
from .reference.client import Open5eClient
from .reference.loader import BulkLoader
from .reference.service import ReferenceService
from .reference.store import ReferenceStore
from .reference.warmup import WarmupScheduler

logger = logging.getLogger("grimoire")


@dataclass
class ReferenceContext:
    """Everything a request handler or tool needs, wired together."""
    settings: Settings
    client: Open5eClient
    cache: ReferenceCache
    store: ReferenceStore
    scheduler: WarmupScheduler
    loader: BulkLoader
    service: ReferenceService

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ReferenceContext":
        """
        Wire up the client, cache, store, scheduler, loader and service.

        Args:
            settings: Validated settings
            transport: Optional httpx transport replacing the network
        """
        client = Open5eClient.from_settings(settings, transport=transport)
        cache = ReferenceCache(SQLiteCacheBackend(settings.cache_path))
        store = ReferenceStore(settings.database_path)
        logger.debug(f"Reference store at {settings.database_path}, cache at {settings.cache_path}")

        return cls(
            settings=settings,
            client=client,
            cache=cache,
            store=store,
            scheduler=WarmupScheduler.from_settings(settings, client, cache),
            loader=BulkLoader(client, store),
            service=ReferenceService(client, cache, store, default_ttl=settings.default_ttl),
        )

    async def aclose(self) -> None:
        """Stop the scheduler and release the HTTP pool and database handles."""
        await self.scheduler.stop()
        await self.client.aclose()
        self.cache.close()
        self.store.close()


__all__ = [
    "ReferenceContext",
]
