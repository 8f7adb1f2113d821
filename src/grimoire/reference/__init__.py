"""
Open5e reference data for grimoire.

This module provides:
- Open5eClient: rate-limited, retrying, paginating API client
- ReferenceCache: two-tier TTL cache over a SQLite backend
- WarmupScheduler: periodic cache warmup and expiry sweeps
- ReferenceStore: normalized SQLite tables, one per category
- BulkLoader: idempotent population of the store
- ReferenceService: lookups shared by the HTTP routes and MCP tools
"""

from .models import (
    FORMAT_VERSION,
    Category,
    CORE_CATEGORIES,
    BULK_CATEGORIES,
    LoadStatus,
    CacheMetadata,
    SearchResult,
    ReferenceRecord,
    RaceRecord,
    ClassRecord,
    BackgroundRecord,
    SpellRecord,
    MonsterRecord,
    WeaponRecord,
    MagicItemRecord,
    FeatRecord,
)
from .client import Open5eClient, RateLimiter, RetryPolicy
from .cache import ReferenceCache, SQLiteCacheBackend, cache_key
from .store import ReferenceStore
from .warmup import BulkWarmup, WarmupScheduler
from .loader import BulkLoader
from .service import ReferenceService

__all__ = [
    "FORMAT_VERSION",
    "Category",
    "CORE_CATEGORIES",
    "BULK_CATEGORIES",
    "LoadStatus",
    "CacheMetadata",
    "SearchResult",
    "ReferenceRecord",
    "RaceRecord",
    "ClassRecord",
    "BackgroundRecord",
    "SpellRecord",
    "MonsterRecord",
    "WeaponRecord",
    "MagicItemRecord",
    "FeatRecord",
    "Open5eClient",
    "RateLimiter",
    "RetryPolicy",
    "ReferenceCache",
    "SQLiteCacheBackend",
    "cache_key",
    "ReferenceStore",
    "BulkWarmup",
    "WarmupScheduler",
    "BulkLoader",
    "ReferenceService",
]
