"""
Reference lookups shared by the HTTP routes and the MCP tools.

Two read paths:
- lookup(): live Open5e data through the TTL cache (read-through)
- get_record() / list_records() / search(): the local reference store
"""

import logging
from typing import Any, Callable

from .cache import ReferenceCache, cache_key
from .client import Open5eClient
from .models import Category, ReferenceRecord, SearchResult
from .store import ReferenceStore
from .tables import challenge_rating_to_float

logger = logging.getLogger("grimoire.service")

MAX_LIMIT = 100
DEFAULT_TTL = 24 * 3600.0


def _parse_level(value: Any) -> int:
    level = int(value)
    if not 0 <= level <= 9:
        raise ValueError(f"spell level must be between 0 and 9, got {level}")
    return level


def _parse_cr(value: Any) -> float:
    cr = challenge_rating_to_float({"challenge_rating": value})
    if cr is None:
        raise ValueError(f"invalid challenge rating: {value!r}")
    return cr


# Filters accepted by list_records(), with the parser applied to each value
FILTERS: dict[Category, dict[str, Callable[[Any], Any]]] = {
    Category.SPELLS: {"level": _parse_level, "school": str, "dnd_class": str},
    Category.MONSTERS: {"cr": _parse_cr, "type": str},
    Category.WEAPONS: {"category": str},
    Category.MAGIC_ITEMS: {"rarity": str},
}


def validate_limit(limit: Any) -> int | None:
    """Coerce and bounds-check a result limit (1-100, or None for unlimited)."""
    if limit is None or limit == "":
        return None
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise ValueError(f"limit must be an integer, got {limit!r}")
    if not 1 <= value <= MAX_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")
    return value


class ReferenceService:
    """Facade over the cache, client and store for inbound requests."""

    def __init__(
        self,
        client: Open5eClient,
        cache: ReferenceCache,
        store: ReferenceStore,
        default_ttl: float = DEFAULT_TTL,
    ):
        self.client = client
        self.cache = cache
        self.store = store
        self.default_ttl = default_ttl

    async def lookup(
        self,
        category: Category | str,
        slug: str | None = None,
        search: str | None = None,
        limit: Any = None,
    ) -> Any:
        """
        Cached-or-fetched Open5e data for a category.

        Args:
            category: Category name
            slug: Exact record slug (excludes search)
            search: Upstream substring search (excludes slug)
            limit: Trim list results to at most this many items (1-100)

        Returns:
            A single record for slug lookups, otherwise a list of records

        Raises:
            ValueError: If the request is malformed
            UpstreamError: If Open5e could not answer
        """
        category = Category.parse(category)
        slug = slug or None
        search = search or None
        if slug and search:
            raise ValueError("Provide either slug or search, not both")
        limit = validate_limit(limit)

        key = cache_key(category, slug=slug, search=search, limit=limit)
        data = self.cache.get(key)
        if data is None:
            if slug:
                data = await self.client.fetch_by_slug(category, slug)
            elif search:
                data = await self.client.search(category, search)
            else:
                data = await self.client.fetch_all(category)
            self.cache.set(key, category, data, self.default_ttl)

        if limit is not None and isinstance(data, list):
            return data[:limit]
        return data

    # =========================================================================
    # Store-backed reads
    # =========================================================================

    def get_record(self, category: Category | str, slug: str) -> ReferenceRecord | None:
        return self.store.get_by_slug(Category.parse(category), slug)

    def list_records(
        self,
        category: Category | str,
        filters: dict[str, Any] | None = None,
    ) -> list[ReferenceRecord]:
        """
        Stored records of a category, optionally filtered.

        Supported filters: spells (level, school, dnd_class), monsters
        (cr, type), weapons (category), magic items (rarity).

        Raises:
            ValueError: On an unknown filter or an unparseable value
        """
        category = Category.parse(category)
        allowed = FILTERS.get(category, {})
        parsed: dict[str, Any] = {}
        for name, value in (filters or {}).items():
            if value is None or value == "":
                continue
            if name not in allowed:
                raise ValueError(
                    f"Unknown filter '{name}' for {category.value}. "
                    f"Supported: {', '.join(allowed) or 'none'}"
                )
            try:
                parsed[name] = allowed[name](value)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for '{name}': {e}") from e

        if category is Category.SPELLS:
            return self.store.get_spells(**parsed)
        if category is Category.MONSTERS:
            return self.store.get_monsters(**parsed)
        if category is Category.WEAPONS:
            return self.store.get_weapons(**parsed)
        if category is Category.MAGIC_ITEMS:
            return self.store.get_magic_items(**parsed)
        return self.store.list_records(category)

    def search(self, query: str, limit: Any = 10) -> list[SearchResult]:
        """Substring search across every stored category."""
        query = (query or "").strip()
        if not query:
            raise ValueError("Search query must not be empty")
        return self.store.search(query, validate_limit(limit) or 10)

    def status(self) -> dict[str, Any]:
        """Load status of the store and metadata of the cache, per category."""
        return {
            "data_loaded": self.store.is_data_loaded(),
            "load_status": [
                status.model_dump(mode="json") for status in self.store.get_all_load_status()
            ],
            "cache": [meta.model_dump(mode="json") for meta in self.cache.all_metadata()],
        }


__all__ = [
    "FILTERS",
    "validate_limit",
    "ReferenceService",
]
