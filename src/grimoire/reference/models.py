"""
Data models for Open5e reference data.

Raw API payloads are plain dicts. Once normalized into the reference store,
rows are read back as the typed records below, with nested JSON columns
(ability score increases, speed maps, action lists...) already decoded.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

# Bumped whenever the stored row shape or cache payload shape changes.
FORMAT_VERSION = "1.0.0"

T = TypeVar("T")

RawRecord = dict[str, Any]

# Decoded JSON column; upstream sends either shape for some fields (race asi)
Nested = list[Any] | dict[str, Any]


# =============================================================================
# Categories
# =============================================================================

class Category(str, Enum):
    """Open5e endpoints mirrored by grimoire.

    The value is the upstream path segment and the cache tag.
    """
    SPELLS = "spells"
    MONSTERS = "monsters"
    WEAPONS = "weapons"
    MAGIC_ITEMS = "magicitems"
    RACES = "races"
    CLASSES = "classes"
    BACKGROUNDS = "backgrounds"
    FEATS = "feats"

    @property
    def label(self) -> str:
        """Singular tag used on cross-category search hits."""
        return CATEGORY_LABELS[self]

    @classmethod
    def parse(cls, value: "str | Category") -> "Category":
        """Resolve a category from its endpoint name, enum name or label.

        Raises:
            ValueError: If the value names no known category
        """
        if isinstance(value, Category):
            return value
        normalized = value.strip().lower()
        for category in cls:
            if normalized in (category.value, category.name.lower(), category.label):
                return category
        raise ValueError(
            f"Unknown category '{value}'. Valid categories: "
            f"{', '.join(c.value for c in cls)}"
        )


CATEGORY_LABELS = {
    Category.SPELLS: "spell",
    Category.MONSTERS: "monster",
    Category.WEAPONS: "weapon",
    Category.MAGIC_ITEMS: "magic_item",
    Category.RACES: "race",
    Category.CLASSES: "class",
    Category.BACKGROUNDS: "background",
    Category.FEATS: "feat",
}

# Unbounded but small categories, warmed eagerly with a long TTL
CORE_CATEGORIES = (Category.RACES, Category.CLASSES, Category.BACKGROUNDS)

# Large paginated categories, warmed concurrently with a short TTL
BULK_CATEGORIES = (Category.SPELLS, Category.WEAPONS, Category.MAGIC_ITEMS)


# =============================================================================
# Upstream envelope and bookkeeping
# =============================================================================

class Page(BaseModel, Generic[T]):
    """One page of a paginated Open5e response."""
    count: int | None = None
    next: str | None = None
    previous: str | None = None
    results: list[T] = Field(default_factory=list)


class LoadStatus(BaseModel):
    """Bulk load bookkeeping for one category."""
    category: Category
    item_count: int = Field(ge=0)
    last_loaded: datetime
    version: str = FORMAT_VERSION


class CacheMetadata(BaseModel):
    """Per-category cache bookkeeping."""
    category: Category
    last_updated: datetime
    total_items: int = Field(ge=0, description="Live cache rows tagged with the category")
    version: str = FORMAT_VERSION


class SearchResult(BaseModel):
    """A cross-category substring search hit."""
    slug: str
    name: str
    description: str | None = None
    category: str = Field(description="Singular category label, e.g. 'spell'")


# =============================================================================
# Reference records
# =============================================================================

class ReferenceRecord(BaseModel):
    """Fields shared by every stored reference record."""
    slug: str = Field(description="Unique identifier within the category")
    name: str
    description: str | None = None
    document_slug: str | None = None
    document_title: str | None = None
    document_url: str | None = None


class RaceRecord(ReferenceRecord):
    ability_scores: Nested = Field(default_factory=list)
    age: str | None = None
    alignment: str | None = None
    size: str | None = None
    speed: Nested = Field(default_factory=dict)
    languages: str | None = None
    vision: str | None = None
    traits: str | None = None
    subraces: Nested = Field(default_factory=list)


class ClassRecord(ReferenceRecord):
    hit_dice: str | None = None
    hp_at_1st_level: str | None = None
    hp_at_higher_levels: str | None = None
    prof_armor: str | None = None
    prof_weapons: str | None = None
    prof_tools: str | None = None
    prof_saving_throws: str | None = None
    prof_skills: str | None = None
    equipment: str | None = None
    table_data: str | None = None
    spellcasting_ability: str | None = None
    subtypes_name: str | None = None
    archetypes: Nested = Field(default_factory=list)


class BackgroundRecord(ReferenceRecord):
    skill_proficiencies: str | None = None
    tool_proficiencies: str | None = None
    languages: str | None = None
    equipment: str | None = None
    feature: str | None = None
    feature_desc: str | None = None
    suggested_characteristics: str | None = None


class SpellRecord(ReferenceRecord):
    higher_level: str | None = None
    range: str | None = None
    components: str | None = None
    material: str | None = None
    ritual: bool = False
    duration: str | None = None
    concentration: bool = False
    casting_time: str | None = None
    level: int = Field(default=0, ge=0, le=9)
    school: str | None = None
    classes: str | None = None
    spell_lists: Nested = Field(default_factory=list)


class MonsterRecord(ReferenceRecord):
    size: str | None = None
    type: str | None = None
    subtype: str | None = None
    alignment: str | None = None
    armor_class: int | None = None
    armor_desc: str | None = None
    hit_points: int | None = None
    hit_dice: str | None = None
    speed: Nested = Field(default_factory=dict)
    strength: int | None = None
    dexterity: int | None = None
    constitution: int | None = None
    intelligence: int | None = None
    wisdom: int | None = None
    charisma: int | None = None
    strength_save: int | None = None
    dexterity_save: int | None = None
    constitution_save: int | None = None
    intelligence_save: int | None = None
    wisdom_save: int | None = None
    charisma_save: int | None = None
    skills: Nested = Field(default_factory=dict)
    damage_vulnerabilities: str | None = None
    damage_resistances: str | None = None
    damage_immunities: str | None = None
    condition_immunities: str | None = None
    senses: str | None = None
    languages: str | None = None
    challenge_rating: str | None = None
    cr: float | None = None
    actions: Nested = Field(default_factory=list)
    bonus_actions: Nested = Field(default_factory=list)
    reactions: Nested = Field(default_factory=list)
    legendary_desc: str | None = None
    legendary_actions: Nested = Field(default_factory=list)
    special_abilities: Nested = Field(default_factory=list)
    spell_list: Nested = Field(default_factory=list)
    environments: Nested = Field(default_factory=list)


class WeaponRecord(ReferenceRecord):
    category: str | None = None
    cost: str | None = None
    damage_dice: str | None = None
    damage_type: str | None = None
    weight: str | None = None
    properties: Nested = Field(default_factory=list)


class MagicItemRecord(ReferenceRecord):
    type: str | None = None
    rarity: str | None = None
    requires_attunement: str | None = None


class FeatRecord(ReferenceRecord):
    prerequisite: str | None = None
    effects: str | None = None


__all__ = [
    "FORMAT_VERSION",
    "RawRecord",
    "Category",
    "CORE_CATEGORIES",
    "BULK_CATEGORIES",
    "Page",
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
]
