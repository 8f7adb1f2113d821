"""
Two-tier TTL cache in front of the Open5e client.

The persisted tier (SQLiteCacheBackend) is the source of truth. The memory
tier only ever holds entries that were first written to, or read back from,
the persisted tier, and is pruned by the same expiry rule, so it is always a
subset of what is persisted.
"""

import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..exceptions import CacheReadError
from .models import FORMAT_VERSION, CacheMetadata, Category

logger = logging.getLogger("grimoire.cache")

CACHE_TABLE = "open5e_cache"
METADATA_TABLE = "open5e_cache_metadata"


def cache_key(
    category: Category | str,
    slug: str | None = None,
    search: str | None = None,
    limit: int | None = None,
) -> str:
    """
    Build the cache key for a lookup.

    Distinct lookup shapes never share a key:
        spells:fireball               exact slug
        spells:search:fire:10         search, limited
        spells:all:all                full listing

    Raises:
        ValueError: If both slug and search are given
    """
    if slug is not None and search is not None:
        raise ValueError("slug and search are mutually exclusive")
    name = Category.parse(category).value
    if slug is not None:
        return f"{name}:{slug}"
    suffix = "all" if limit is None else str(limit)
    if search is not None:
        return f"{name}:search:{search}:{suffix}"
    return f"{name}:all:{suffix}"


class SQLiteCacheBackend:
    """Persisted cache tier: cache rows plus per-category metadata."""

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = db_path
        in_memory = str(db_path) == ":memory:"
        if not in_memory:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if not in_memory:
            self._conn.execute("PRAGMA journal_mode = WAL")
        with self._conn:
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {CACHE_TABLE} (
                    cache_key TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{CACHE_TABLE}_category ON {CACHE_TABLE}(category)"
            )
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{CACHE_TABLE}_expires ON {CACHE_TABLE}(expires_at)"
            )
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {METADATA_TABLE} (
                    category TEXT PRIMARY KEY,
                    last_updated TEXT NOT NULL,
                    total_items INTEGER NOT NULL,
                    version TEXT NOT NULL
                )
                """
            )

    def close(self) -> None:
        self._conn.close()

    def fetch(self, key: str, now: float) -> sqlite3.Row | None:
        """Live row for a key, or None if absent or expired."""
        return self._conn.execute(
            f"SELECT * FROM {CACHE_TABLE} WHERE cache_key = ? AND expires_at > ?",
            (key, now),
        ).fetchone()

    def put(self, key: str, category: str, data: str, created_at: float, expires_at: float) -> None:
        with self._conn:
            self._conn.execute(
                f"""
                INSERT OR REPLACE INTO {CACHE_TABLE} (cache_key, category, data, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (key, category, data, created_at, expires_at),
            )

    def delete(self, key: str) -> None:
        with self._conn:
            self._conn.execute(f"DELETE FROM {CACHE_TABLE} WHERE cache_key = ?", (key,))

    def delete_expired(self, now: float) -> int:
        with self._conn:
            cursor = self._conn.execute(
                f"DELETE FROM {CACHE_TABLE} WHERE expires_at <= ?", (now,)
            )
        return cursor.rowcount

    def delete_category(self, category: str) -> int:
        with self._conn:
            cursor = self._conn.execute(
                f"DELETE FROM {CACHE_TABLE} WHERE category = ?", (category,)
            )
        return cursor.rowcount

    def delete_all(self) -> None:
        with self._conn:
            self._conn.execute(f"DELETE FROM {CACHE_TABLE}")
            self._conn.execute(f"DELETE FROM {METADATA_TABLE}")

    def count_live(self, category: str, now: float) -> int:
        return self._conn.execute(
            f"SELECT COUNT(*) FROM {CACHE_TABLE} WHERE category = ? AND expires_at > ?",
            (category, now),
        ).fetchone()[0]

    def put_metadata(self, category: str, total_items: int, last_updated: str) -> None:
        with self._conn:
            self._conn.execute(
                f"""
                INSERT OR REPLACE INTO {METADATA_TABLE} (category, last_updated, total_items, version)
                VALUES (?, ?, ?, ?)
                """,
                (category, last_updated, total_items, FORMAT_VERSION),
            )

    def get_metadata(self, category: str) -> sqlite3.Row | None:
        return self._conn.execute(
            f"SELECT * FROM {METADATA_TABLE} WHERE category = ?", (category,)
        ).fetchone()

    def all_metadata(self) -> list[sqlite3.Row]:
        return self._conn.execute(
            f"SELECT * FROM {METADATA_TABLE} ORDER BY category"
        ).fetchall()

    def delete_metadata(self, category: str) -> None:
        with self._conn:
            self._conn.execute(f"DELETE FROM {METADATA_TABLE} WHERE category = ?", (category,))


@dataclass
class _MemoryEntry:
    category: str
    value: Any
    expires_at: float


class ReferenceCache:
    """
    Read-through TTL cache with a memory tier over a persisted backend.

    Usage:
        cache = ReferenceCache(SQLiteCacheBackend("data/open5e-cache.db"))
        key = cache_key(Category.SPELLS, limit=20)
        spells = cache.get(key)
        if spells is None:
            spells = await client.fetch_all(Category.SPELLS)
            cache.set(key, Category.SPELLS, spells, ttl=86400)
    """

    def __init__(
        self,
        backend: SQLiteCacheBackend | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            backend: Persisted tier; defaults to a private in-memory database
            clock: Wall-clock source in epoch seconds
        """
        self.backend = backend or SQLiteCacheBackend()
        self._clock = clock
        self._memory: dict[str, _MemoryEntry] = {}
        self._drop_stale_versions()

    def _drop_stale_versions(self) -> None:
        for row in self.backend.all_metadata():
            if row["version"] != FORMAT_VERSION:
                logger.warning(
                    f"Dropping cached {row['category']} written with format "
                    f"{row['version']} (current {FORMAT_VERSION})"
                )
                self.backend.delete_category(row["category"])
                self.backend.delete_metadata(row["category"])

    def get(self, key: str) -> Any | None:
        """Cached value for a key, or None on miss or expiry."""
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None:
            if now < entry.expires_at:
                logger.debug(f"Cache hit (memory): {key}")
                return entry.value
            del self._memory[key]

        row = self.backend.fetch(key, now)
        if row is None:
            logger.debug(f"Cache miss: {key}")
            return None

        try:
            value = self._decode(key, row["data"])
        except CacheReadError as e:
            logger.warning(f"{e.message}, evicting and treating as miss")
            self.backend.delete(key)
            self._memory.pop(key, None)
            self._refresh_metadata(row["category"], now)
            return None

        self._memory[key] = _MemoryEntry(row["category"], value, row["expires_at"])
        logger.debug(f"Cache hit (persisted): {key}")
        return value

    @staticmethod
    def _decode(key: str, data: str) -> Any:
        try:
            return json.loads(data)
        except (TypeError, json.JSONDecodeError) as e:
            raise CacheReadError(f"Corrupt cache payload for '{key}': {e}", key=key) from e

    def set(self, key: str, category: Category, value: Any, ttl: float) -> None:
        """
        Store a value, replacing any previous entry for the key.

        Args:
            key: Cache key, see cache_key()
            category: Category tag used for bulk invalidation
            value: JSON-serializable payload
            ttl: Time to live in seconds (non-positive means already expired)
        """
        now = self._clock()
        expires_at = now + ttl
        data = json.dumps(value)

        self.backend.put(key, category.value, data, now, expires_at)
        # Mirror the decoded payload so memory and persisted reads agree
        self._memory[key] = _MemoryEntry(category.value, json.loads(data), expires_at)
        self._refresh_metadata(category.value, now)

    def clear_expired(self) -> int:
        """Drop expired entries from both tiers; returns persisted rows removed."""
        now = self._clock()
        removed = self.backend.delete_expired(now)

        expired = [key for key, entry in self._memory.items() if entry.expires_at <= now]
        for key in expired:
            del self._memory[key]

        for row in self.backend.all_metadata():
            self._refresh_metadata(row["category"], now)

        if removed or expired:
            logger.info(f"Cleared {removed} expired cache rows ({len(expired)} in memory)")
        return removed

    def clear_category(self, category: Category) -> None:
        """Drop every entry tagged with a category."""
        removed = self.backend.delete_category(category.value)
        for key in [k for k, e in self._memory.items() if e.category == category.value]:
            del self._memory[key]
        self._refresh_metadata(category.value, self._clock())
        logger.info(f"Cleared {removed} cached {category.value} entries")

    def clear_all(self) -> None:
        """Wipe both tiers and all metadata."""
        self.backend.delete_all()
        self._memory.clear()
        logger.info("Cleared Open5e cache")

    def get_metadata(self, category: Category) -> CacheMetadata | None:
        row = self.backend.get_metadata(category.value)
        return CacheMetadata.model_validate(dict(row)) if row else None

    def all_metadata(self) -> list[CacheMetadata]:
        return [CacheMetadata.model_validate(dict(row)) for row in self.backend.all_metadata()]

    def _refresh_metadata(self, category: str, now: float) -> None:
        self.backend.put_metadata(
            category,
            self.backend.count_live(category, now),
            datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
        )

    def close(self) -> None:
        self._memory.clear()
        self.backend.close()


__all__ = [
    "cache_key",
    "SQLiteCacheBackend",
    "ReferenceCache",
]
