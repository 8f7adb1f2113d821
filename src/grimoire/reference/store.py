"""
SQLite-backed store for normalized Open5e reference data.

This is ground truth once loaded: rows never expire. Every category gets its
own table (see tables.TABLES); nested structures are stored as JSON text and
decoded on read. Bulk writes are all-or-nothing per call and record a load
status row for the category in the same transaction.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from ..exceptions import StoreWriteError
from .models import (
    CORE_CATEGORIES,
    FORMAT_VERSION,
    Category,
    LoadStatus,
    RawRecord,
    ReferenceRecord,
    SearchResult,
)
from .tables import TABLES, TableSpec

logger = logging.getLogger("grimoire.store")

LOAD_STATUS_TABLE = "open5e_load_status"


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class ReferenceStore:
    """
    Persistent store for reference records.

    Features:
    - One table per category, upsert by slug
    - Atomic bulk writes with load-status bookkeeping
    - Slug lookups, filtered list queries with stable ordering
    - Cross-category substring search

    Usage:
        store = ReferenceStore(Path("data/game.db"))
        store.store_records(Category.SPELLS, spells)
        fireball = store.get_by_slug(Category.SPELLS, "fireball")
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        """
        Open (and create if needed) the store database.

        Args:
            db_path: SQLite file path, or ":memory:" for a private in-memory store
        """
        self.db_path = db_path
        in_memory = str(db_path) == ":memory:"
        if not in_memory:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # One connection, only ever used from the event loop thread at a time
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if not in_memory:
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._conn:
            for spec in TABLES.values():
                for statement in spec.create_statements():
                    self._conn.execute(statement)
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {LOAD_STATUS_TABLE} (
                    category TEXT PRIMARY KEY,
                    item_count INTEGER NOT NULL,
                    last_loaded TEXT NOT NULL,
                    version TEXT NOT NULL
                )
                """
            )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    def store_records(self, category: Category, records: Iterable[RawRecord]) -> int:
        """
        Upsert a batch of upstream records for a category.

        Either every record in the batch is written (and the load status
        updated) or nothing is.

        Args:
            category: Category the records belong to
            records: Raw Open5e records

        Returns:
            Number of records written

        Raises:
            StoreWriteError: If any record is malformed or the write fails
        """
        spec = TABLES[category]
        records = list(records)

        try:
            rows = [spec.to_row(record) for record in records]
        except (ValueError, TypeError, AttributeError) as e:
            raise StoreWriteError(
                f"Malformed {category.value} record: {e}",
                category=category.value,
            ) from e

        try:
            with self._conn:
                self._conn.executemany(spec.upsert_sql(), rows)
                self._update_load_status(spec)
        except sqlite3.Error as e:
            raise StoreWriteError(
                f"Failed to store {len(rows)} {category.value}: {e}",
                category=category.value,
                details={"batch_size": len(rows)},
            ) from e

        logger.debug(f"Stored {len(rows)} {category.value}")
        return len(rows)

    def _update_load_status(self, spec: TableSpec) -> None:
        count = self._conn.execute(f"SELECT COUNT(*) FROM {spec.table}").fetchone()[0]
        self._conn.execute(
            f"""
            INSERT OR REPLACE INTO {LOAD_STATUS_TABLE} (category, item_count, last_loaded, version)
            VALUES (?, ?, ?, ?)
            """,
            (
                spec.category.value,
                count,
                datetime.now(timezone.utc).isoformat(),
                FORMAT_VERSION,
            ),
        )

    def clear_all(self) -> None:
        """Delete every reference row and all load status rows."""
        with self._conn:
            for spec in TABLES.values():
                self._conn.execute(f"DELETE FROM {spec.table}")
            self._conn.execute(f"DELETE FROM {LOAD_STATUS_TABLE}")
        logger.info("Cleared all Open5e reference data")

    # =========================================================================
    # Reads
    # =========================================================================

    def _select(
        self,
        spec: TableSpec,
        clauses: list[str] | None = None,
        params: list[Any] | None = None,
        order_by: str | None = None,
    ) -> list[ReferenceRecord]:
        sql = f"SELECT * FROM {spec.table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {order_by or spec.order_by}"
        rows = self._conn.execute(sql, params or []).fetchall()
        return [spec.to_record(row) for row in rows]

    def get_by_slug(self, category: Category, slug: str) -> ReferenceRecord | None:
        """Fetch one record by slug, or None if absent."""
        spec = TABLES[category]
        row = self._conn.execute(
            f"SELECT * FROM {spec.table} WHERE slug = ?", (slug,)
        ).fetchone()
        return spec.to_record(row) if row else None

    def list_records(self, category: Category) -> list[ReferenceRecord]:
        """All records of a category in the category's display order."""
        return self._select(TABLES[category])

    def count(self, category: Category) -> int:
        spec = TABLES[category]
        return self._conn.execute(f"SELECT COUNT(*) FROM {spec.table}").fetchone()[0]

    def get_spells(
        self,
        level: int | None = None,
        school: str | None = None,
        dnd_class: str | None = None,
    ) -> list[ReferenceRecord]:
        """Spells ordered by level then name, optionally filtered."""
        clauses: list[str] = []
        params: list[Any] = []
        if level is not None:
            clauses.append("level = ?")
            params.append(level)
        if school:
            clauses.append("school = ? COLLATE NOCASE")
            params.append(school)
        if dnd_class:
            clauses.append("classes LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(dnd_class))
        return self._select(TABLES[Category.SPELLS], clauses, params)

    def get_monsters(
        self,
        cr: float | None = None,
        type: str | None = None,
    ) -> list[ReferenceRecord]:
        """Monsters ordered by challenge rating then name, optionally filtered."""
        clauses: list[str] = []
        params: list[Any] = []
        if cr is not None:
            clauses.append("cr = ?")
            params.append(cr)
        if type:
            clauses.append('"type" = ? COLLATE NOCASE')
            params.append(type)
        return self._select(TABLES[Category.MONSTERS], clauses, params)

    def get_weapons(self, category: str | None = None) -> list[ReferenceRecord]:
        """Weapons ordered by weapon category then name."""
        if category:
            return self._select(
                TABLES[Category.WEAPONS],
                ["category = ? COLLATE NOCASE"],
                [category],
                order_by="name",
            )
        return self._select(TABLES[Category.WEAPONS])

    def get_magic_items(self, rarity: str | None = None) -> list[ReferenceRecord]:
        """Magic items ordered by rarity then name."""
        if rarity:
            return self._select(
                TABLES[Category.MAGIC_ITEMS],
                ["rarity = ? COLLATE NOCASE"],
                [rarity],
                order_by="name",
            )
        return self._select(TABLES[Category.MAGIC_ITEMS])

    def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """
        Substring search over name and description in every category.

        Results are grouped per category (in TABLES order), each group capped
        at `limit` and ordered by name. Groups are concatenated, not re-ranked.

        Args:
            query: Case-insensitive substring
            limit: Maximum hits per category
        """
        pattern = _like_pattern(query)
        results: list[SearchResult] = []
        for category, spec in TABLES.items():
            rows = self._conn.execute(
                f"""
                SELECT slug, name, description FROM {spec.table}
                WHERE name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\'
                ORDER BY name
                LIMIT ?
                """,
                (pattern, pattern, limit),
            ).fetchall()
            results.extend(
                SearchResult(
                    slug=row["slug"],
                    name=row["name"],
                    description=row["description"],
                    category=category.label,
                )
                for row in rows
            )
        return results

    # =========================================================================
    # Load status
    # =========================================================================

    def get_load_status(self, category: Category) -> LoadStatus | None:
        row = self._conn.execute(
            f"SELECT * FROM {LOAD_STATUS_TABLE} WHERE category = ?", (category.value,)
        ).fetchone()
        return LoadStatus.model_validate(dict(row)) if row else None

    def get_all_load_status(self) -> list[LoadStatus]:
        rows = self._conn.execute(
            f"SELECT * FROM {LOAD_STATUS_TABLE} ORDER BY category"
        ).fetchall()
        return [LoadStatus.model_validate(dict(row)) for row in rows]

    def is_data_loaded(self) -> bool:
        """True when every core category has been loaded with at least one item."""
        for category in CORE_CATEGORIES:
            status = self.get_load_status(category)
            if status is None or status.item_count == 0:
                return False
        return True


__all__ = [
    "ReferenceStore",
]
