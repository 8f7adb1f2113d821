"""
Table layout for the reference store, one spec per category.

Each TableSpec says how an upstream Open5e record is flattened into a row
(which keys feed which column, which columns hold JSON), how the row is read
back into a typed record, and how list queries are ordered and filtered.
TABLES must cover every Category; a missing entry fails at import time.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .models import (
    BackgroundRecord,
    Category,
    ClassRecord,
    FeatRecord,
    MagicItemRecord,
    MonsterRecord,
    RaceRecord,
    RawRecord,
    ReferenceRecord,
    SpellRecord,
    WeaponRecord,
)

logger = logging.getLogger("grimoire.store")


class ColumnKind(str, Enum):
    """Storage kind of a column; drives encoding on write and decoding on read."""
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    JSON_LIST = "JSON_LIST"
    JSON_OBJECT = "JSON_OBJECT"

    @property
    def sql_type(self) -> str:
        if self in (ColumnKind.INTEGER, ColumnKind.BOOLEAN):
            return "INTEGER"
        if self is ColumnKind.REAL:
            return "REAL"
        return "TEXT"


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_bool(value: Any) -> int:
    # The API mixes real booleans with "yes"/"no" strings
    if isinstance(value, str):
        return int(value.strip().lower() in ("yes", "true", "1"))
    return int(bool(value))


def challenge_rating_to_float(raw: RawRecord) -> float | None:
    """Numeric CR from a monster record ("1/4" -> 0.25)."""
    if raw.get("cr") is not None:
        return _to_float(raw["cr"])
    cr_str = str(raw.get("challenge_rating") or "").strip()
    if not cr_str:
        return None
    try:
        if "/" in cr_str:
            num, denom = cr_str.split("/")
            return float(num) / float(denom)
        return float(cr_str)
    except (ValueError, ZeroDivisionError):
        return None


@dataclass(frozen=True)
class Column:
    """One stored column.

    Attributes:
        name: Column name in the table and field name on the record model
        kind: Storage kind
        sources: Upstream keys tried in order; defaults to (name,)
        required: Reject records where no source key has a value
        blank_to_null: Store empty strings as NULL
        derive: Computes the value from the whole raw record instead of sources
        default: Stored and read back in place of a missing value
    """
    name: str
    kind: ColumnKind = ColumnKind.TEXT
    sources: tuple[str, ...] = ()
    required: bool = False
    blank_to_null: bool = False
    derive: Callable[[RawRecord], Any] | None = None
    default: Any = None

    def extract(self, raw: RawRecord) -> Any:
        """Pull and encode this column's value from an upstream record."""
        if self.derive is not None:
            value = self.derive(raw)
        else:
            value = None
            for key in self.sources or (self.name,):
                if raw.get(key) is not None:
                    value = raw[key]
                    break

        if self.required and (value is None or value == ""):
            raise ValueError(f"record is missing required field '{self.name}'")
        if self.blank_to_null and value == "":
            value = None
        encoded = self.encode(value)
        return self.default if encoded is None else encoded

    def encode(self, value: Any) -> Any:
        if self.kind is ColumnKind.INTEGER:
            return _to_int(value)
        if self.kind is ColumnKind.REAL:
            return _to_float(value)
        if self.kind is ColumnKind.BOOLEAN:
            return _to_bool(value)
        if self.kind in (ColumnKind.JSON_LIST, ColumnKind.JSON_OBJECT):
            return self._encode_json(value)
        return _to_text(value)

    def _encode_json(self, value: Any) -> str:
        # Lists and objects are stored as sent, whichever shape the column expects
        if not isinstance(value, (list, dict)):
            if value is not None and value != "":
                logger.warning(
                    f"Storing empty {self.name}: expected a list or object, got {value!r}"
                )
            value = [] if self.kind is ColumnKind.JSON_LIST else {}
        return json.dumps(value, separators=(",", ":"))

    def decode(self, value: Any) -> Any:
        """Turn a stored value back into its Python shape."""
        if value is None and self.default is not None:
            return self.default
        if self.kind is ColumnKind.BOOLEAN:
            return bool(value)
        if self.kind in (ColumnKind.JSON_LIST, ColumnKind.JSON_OBJECT):
            empty: Any = [] if self.kind is ColumnKind.JSON_LIST else {}
            if not value:
                return empty
            try:
                return json.loads(value)
            except (TypeError, json.JSONDecodeError) as e:
                logger.warning(f"Undecodable JSON in column '{self.name}': {e}")
                return empty
        return value


@dataclass(frozen=True)
class TableSpec:
    """Storage layout and query shape for one category.

    Attributes:
        category: Category stored in this table
        table: SQL table name
        record_model: Typed record returned on read
        columns: Category-specific columns (shared columns are added around them)
        order_by: Deterministic ordering for list queries
        indexes: Columns that get a secondary index
    """
    category: Category
    table: str
    record_model: type[ReferenceRecord]
    columns: tuple[Column, ...]
    order_by: str = "name"
    indexes: tuple[str, ...] = ()
    all_columns: tuple[Column, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "all_columns", HEAD_COLUMNS + self.columns + DOCUMENT_COLUMNS)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.all_columns]

    def create_statements(self) -> list[str]:
        defs = []
        for column in self.all_columns:
            if column.name == "slug":
                defs.append("slug TEXT PRIMARY KEY")
            elif column.name == "name":
                defs.append("name TEXT NOT NULL")
            else:
                defs.append(f"\"{column.name}\" {column.kind.sql_type}")
        statements = [f"CREATE TABLE IF NOT EXISTS {self.table} ({', '.join(defs)})"]
        statements.append(f"CREATE INDEX IF NOT EXISTS idx_{self.table}_name ON {self.table}(name)")
        for column_name in self.indexes:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_{column_name} "
                f"ON {self.table}(\"{column_name}\")"
            )
        return statements

    def upsert_sql(self) -> str:
        names = self.column_names
        quoted = [f'"{n}"' for n in names]
        return (
            f"INSERT OR REPLACE INTO {self.table} ({', '.join(quoted)}) "
            f"VALUES ({', '.join(':' + n for n in names)})"
        )

    def to_row(self, raw: RawRecord) -> dict[str, Any]:
        """Flatten an upstream record into named SQL parameters."""
        return {column.name: column.extract(raw) for column in self.all_columns}

    def to_record(self, row: Any) -> ReferenceRecord:
        """Decode a stored row into the category's record model."""
        data = {column.name: column.decode(row[column.name]) for column in self.all_columns}
        return self.record_model.model_validate(data)


HEAD_COLUMNS = (
    Column("slug", required=True),
    Column("name", required=True),
    Column("description", sources=("desc", "description")),
)

DOCUMENT_COLUMNS = (
    Column("document_slug", sources=("document__slug",)),
    Column("document_title", sources=("document__title",)),
    Column("document_url", sources=("document__url",)),
)

T, I, R, B, JL, JO = (
    ColumnKind.TEXT,
    ColumnKind.INTEGER,
    ColumnKind.REAL,
    ColumnKind.BOOLEAN,
    ColumnKind.JSON_LIST,
    ColumnKind.JSON_OBJECT,
)


TABLES: dict[Category, TableSpec] = {
    Category.RACES: TableSpec(
        category=Category.RACES,
        table="open5e_races",
        record_model=RaceRecord,
        columns=(
            Column("ability_scores", JL, sources=("asi",)),
            Column("age"),
            Column("alignment"),
            Column("size", sources=("size", "size_raw")),
            Column("speed", JO),
            Column("languages"),
            Column("vision"),
            Column("traits"),
            Column("subraces", JL),
        ),
    ),
    Category.CLASSES: TableSpec(
        category=Category.CLASSES,
        table="open5e_classes",
        record_model=ClassRecord,
        columns=(
            Column("hit_dice"),
            Column("hp_at_1st_level"),
            Column("hp_at_higher_levels"),
            Column("prof_armor"),
            Column("prof_weapons"),
            Column("prof_tools"),
            Column("prof_saving_throws"),
            Column("prof_skills"),
            Column("equipment"),
            Column("table_data", sources=("table",)),
            Column("spellcasting_ability"),
            Column("subtypes_name"),
            Column("archetypes", JL),
        ),
    ),
    Category.BACKGROUNDS: TableSpec(
        category=Category.BACKGROUNDS,
        table="open5e_backgrounds",
        record_model=BackgroundRecord,
        columns=(
            Column("skill_proficiencies"),
            Column("tool_proficiencies"),
            Column("languages"),
            Column("equipment"),
            Column("feature"),
            Column("feature_desc"),
            Column("suggested_characteristics"),
        ),
    ),
    Category.SPELLS: TableSpec(
        category=Category.SPELLS,
        table="open5e_spells",
        record_model=SpellRecord,
        columns=(
            Column("higher_level"),
            Column("range"),
            Column("components"),
            Column("material", blank_to_null=True),
            Column("ritual", B, sources=("can_be_cast_as_ritual", "ritual")),
            Column("duration"),
            Column("concentration", B, sources=("requires_concentration", "concentration")),
            Column("casting_time"),
            Column("level", I, sources=("level_int", "spell_level"), default=0),
            Column("school"),
            Column("classes", sources=("dnd_class",)),
            Column("spell_lists", JL),
        ),
        order_by="level, name",
        indexes=("level", "school"),
    ),
    Category.MONSTERS: TableSpec(
        category=Category.MONSTERS,
        table="open5e_monsters",
        record_model=MonsterRecord,
        columns=(
            Column("size"),
            Column("type"),
            Column("subtype", blank_to_null=True),
            Column("alignment"),
            Column("armor_class", I),
            Column("armor_desc"),
            Column("hit_points", I),
            Column("hit_dice"),
            Column("speed", JO),
            Column("strength", I),
            Column("dexterity", I),
            Column("constitution", I),
            Column("intelligence", I),
            Column("wisdom", I),
            Column("charisma", I),
            Column("strength_save", I),
            Column("dexterity_save", I),
            Column("constitution_save", I),
            Column("intelligence_save", I),
            Column("wisdom_save", I),
            Column("charisma_save", I),
            Column("skills", JO),
            Column("damage_vulnerabilities"),
            Column("damage_resistances"),
            Column("damage_immunities"),
            Column("condition_immunities"),
            Column("senses"),
            Column("languages"),
            Column("challenge_rating"),
            Column("cr", R, derive=challenge_rating_to_float),
            Column("actions", JL),
            Column("bonus_actions", JL),
            Column("reactions", JL),
            Column("legendary_desc"),
            Column("legendary_actions", JL),
            Column("special_abilities", JL),
            Column("spell_list", JL),
            Column("environments", JL),
        ),
        order_by="cr, name",
        indexes=("cr", "type"),
    ),
    Category.WEAPONS: TableSpec(
        category=Category.WEAPONS,
        table="open5e_weapons",
        record_model=WeaponRecord,
        columns=(
            Column("category"),
            Column("cost"),
            Column("damage_dice"),
            Column("damage_type"),
            Column("weight"),
            Column("properties", JL),
        ),
        order_by="category, name",
        indexes=("category",),
    ),
    Category.MAGIC_ITEMS: TableSpec(
        category=Category.MAGIC_ITEMS,
        table="open5e_magic_items",
        record_model=MagicItemRecord,
        columns=(
            Column("type"),
            Column("rarity"),
            Column("requires_attunement"),
        ),
        order_by="rarity, name",
        indexes=("rarity",),
    ),
    Category.FEATS: TableSpec(
        category=Category.FEATS,
        table="open5e_feats",
        record_model=FeatRecord,
        columns=(
            Column("prerequisite"),
            Column("effects"),
        ),
    ),
}

_missing = set(Category) - set(TABLES)
if _missing:
    raise RuntimeError(f"No table spec for categories: {sorted(c.value for c in _missing)}")


__all__ = [
    "ColumnKind",
    "Column",
    "TableSpec",
    "TABLES",
    "challenge_rating_to_float",
]
