"""
Tests for the SQLite reference store.
"""

import sqlite3
from unittest.mock import patch

import pytest

from grimoire.exceptions import StoreWriteError
from grimoire.reference.models import (
    FORMAT_VERSION,
    Category,
    MonsterRecord,
    RaceRecord,
    SpellRecord,
)
from grimoire.reference.store import ReferenceStore


# ==============================================================================
# Sample Open5e Data
# ==============================================================================

FIREBALL = {
    "slug": "fireball",
    "name": "Fireball",
    "desc": "A bright streak flashes from your pointing finger to a point you choose within range.",
    "higher_level": "The damage increases by 1d6 for each slot level above 3rd.",
    "range": "150 feet",
    "components": "V, S, M",
    "material": "A tiny ball of bat guano and sulfur",
    "can_be_cast_as_ritual": False,
    "ritual": "no",
    "duration": "Instantaneous",
    "requires_concentration": False,
    "concentration": "no",
    "casting_time": "1 action",
    "level": "3rd-level",
    "level_int": 3,
    "school": "evocation",
    "dnd_class": "Sorcerer, Wizard",
    "spell_lists": ["sorcerer", "wizard"],
    "document__slug": "wotc-srd",
    "document__title": "5e Core Rules",
}

FIRE_BOLT = {
    "slug": "fire-bolt",
    "name": "Fire Bolt",
    "desc": "You hurl a mote of fire at a creature or object within range.",
    "material": "",
    "ritual": "no",
    "concentration": "no",
    "level_int": 0,
    "school": "evocation",
    "dnd_class": "Sorcerer, Wizard",
    "spell_lists": ["sorcerer", "wizard"],
}

DETECT_MAGIC = {
    "slug": "detect-magic",
    "name": "Detect Magic",
    "desc": "For the duration, you sense the presence of magic within 30 feet of you.",
    "can_be_cast_as_ritual": True,
    "requires_concentration": True,
    "level_int": 1,
    "school": "divination",
    "dnd_class": "Bard, Cleric, Druid, Paladin, Ranger, Sorcerer, Wizard",
}

GOBLIN = {
    "slug": "goblin",
    "name": "Goblin",
    "desc": "",
    "size": "Small",
    "type": "humanoid",
    "subtype": "goblinoid",
    "armor_class": 15,
    "hit_points": 7,
    "speed": {"walk": 30},
    "strength": 8,
    "dexterity": 14,
    "skills": {"stealth": 6},
    "challenge_rating": "1/4",
    "cr": 0.25,
    "actions": [{"name": "Scimitar", "desc": "Melee Weapon Attack: +4 to hit."}],
    "bonus_actions": "",
    "reactions": "",
    "legendary_actions": "",
    "special_abilities": [{"name": "Nimble Escape", "desc": "Disengage or Hide as a bonus action."}],
    "environments": ["forest", "hill"],
}

ADULT_RED_DRAGON = {
    "slug": "adult-red-dragon",
    "name": "Adult Red Dragon",
    "type": "dragon",
    "subtype": "",
    "challenge_rating": "17",
    "legendary_actions": [{"name": "Tail Attack", "desc": "The dragon makes a tail attack."}],
}

ORC = {
    "slug": "orc",
    "name": "Orc",
    "type": "humanoid",
    "challenge_rating": "1/2",
}

ELF = {
    "slug": "elf",
    "name": "Elf",
    "desc": "Elves are a magical people of otherworldly grace.",
    "asi": [{"attributes": ["Dexterity"], "value": 2}],
    "speed": {"walk": 30},
    "size": "Medium",
    "subraces": [{"slug": "high-elf", "name": "High Elf"}],
    "document__slug": "wotc-srd",
}

LONGSWORD = {"slug": "longsword", "name": "Longsword", "category": "Martial Melee Weapons", "properties": ["versatile (1d10)"]}
DAGGER = {"slug": "dagger", "name": "Dagger", "category": "Simple Melee Weapons", "properties": ["finesse", "light", "thrown"]}

BAG_OF_HOLDING = {"slug": "bag-of-holding", "name": "Bag of Holding", "type": "Wondrous item", "rarity": "uncommon"}
VORPAL_SWORD = {"slug": "vorpal-sword", "name": "Vorpal Sword", "type": "Weapon (any sword)", "rarity": "legendary"}


@pytest.fixture
def store():
    store = ReferenceStore(":memory:")
    yield store
    store.close()


# ==============================================================================
# Writes
# ==============================================================================

class TestStoreRecords:
    """Tests for bulk upserts."""

    def test_store_is_idempotent(self, store):
        spells = [FIREBALL, FIRE_BOLT, DETECT_MAGIC]

        store.store_records(Category.SPELLS, spells)
        first = [r.model_dump() for r in store.list_records(Category.SPELLS)]
        store.store_records(Category.SPELLS, spells)
        second = [r.model_dump() for r in store.list_records(Category.SPELLS)]

        assert store.count(Category.SPELLS) == 3
        assert first == second
        assert store.get_load_status(Category.SPELLS).item_count == 3

    def test_reingest_replaces_record(self, store):
        store.store_records(Category.SPELLS, [FIREBALL])
        store.store_records(Category.SPELLS, [{**FIREBALL, "range": "300 feet"}])

        spell = store.get_by_slug(Category.SPELLS, "fireball")
        assert spell.range == "300 feet"
        assert store.count(Category.SPELLS) == 1

    def test_malformed_record_writes_nothing(self, store):
        with pytest.raises(StoreWriteError) as exc_info:
            store.store_records(Category.SPELLS, [FIREBALL, {"name": "No Slug"}])

        assert exc_info.value.category == "spells"
        assert store.count(Category.SPELLS) == 0
        assert store.get_load_status(Category.SPELLS) is None

    def test_failed_transaction_rolls_back_batch(self, store):
        store.store_records(Category.SPELLS, [FIREBALL])

        with patch.object(
            ReferenceStore,
            "_update_load_status",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            with pytest.raises(StoreWriteError):
                store.store_records(Category.SPELLS, [FIRE_BOLT, DETECT_MAGIC])

        assert [s.slug for s in store.list_records(Category.SPELLS)] == ["fireball"]
        assert store.get_load_status(Category.SPELLS).item_count == 1

    def test_load_status_is_recorded(self, store):
        store.store_records(Category.RACES, [ELF])

        status = store.get_load_status(Category.RACES)
        assert status.category is Category.RACES
        assert status.item_count == 1
        assert status.version == FORMAT_VERSION
        assert status.last_loaded.tzinfo is not None

    def test_file_store_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "game.db"
        store = ReferenceStore(db_path)
        store.store_records(Category.RACES, [ELF])
        store.close()

        reopened = ReferenceStore(db_path)
        assert reopened.get_by_slug(Category.RACES, "elf").name == "Elf"
        reopened.close()


# ==============================================================================
# Reads
# ==============================================================================

class TestRecordDecoding:
    """Tests for typed reads of normalized rows."""

    def test_spell_fields(self, store):
        store.store_records(Category.SPELLS, [FIREBALL, FIRE_BOLT, DETECT_MAGIC])

        fireball = store.get_by_slug(Category.SPELLS, "fireball")
        assert isinstance(fireball, SpellRecord)
        assert fireball.level == 3
        assert fireball.ritual is False
        assert fireball.classes == "Sorcerer, Wizard"
        assert fireball.spell_lists == ["sorcerer", "wizard"]
        assert fireball.document_title == "5e Core Rules"

        assert store.get_by_slug(Category.SPELLS, "fire-bolt").level == 0
        assert store.get_by_slug(Category.SPELLS, "fire-bolt").material is None
        detect = store.get_by_slug(Category.SPELLS, "detect-magic")
        assert detect.ritual is True
        assert detect.concentration is True

    def test_monster_nested_fields(self, store):
        store.store_records(Category.MONSTERS, [GOBLIN, ADULT_RED_DRAGON])

        goblin = store.get_by_slug(Category.MONSTERS, "goblin")
        assert isinstance(goblin, MonsterRecord)
        assert goblin.cr == 0.25
        assert goblin.speed == {"walk": 30}
        assert goblin.actions[0]["name"] == "Scimitar"
        assert goblin.bonus_actions == []
        assert goblin.environments == ["forest", "hill"]

        dragon = store.get_by_slug(Category.MONSTERS, "adult-red-dragon")
        assert dragon.cr == 17.0
        assert dragon.subtype is None
        assert dragon.legendary_actions[0]["name"] == "Tail Attack"

    def test_race_fields(self, store):
        store.store_records(Category.RACES, [ELF])

        elf = store.get_by_slug(Category.RACES, "elf")
        assert isinstance(elf, RaceRecord)
        assert elf.ability_scores == [{"attributes": ["Dexterity"], "value": 2}]
        assert elf.subraces[0]["slug"] == "high-elf"
        assert elf.description.startswith("Elves")

    def test_spell_without_level_reads_as_cantrip(self, store):
        store.store_records(Category.SPELLS, [{"slug": "odd", "name": "Odd Spell"}, FIREBALL])

        assert store.get_by_slug(Category.SPELLS, "odd").level == 0
        assert [s.slug for s in store.get_spells()] == ["odd", "fireball"]
        assert [s.slug for s in store.get_spells(level=0)] == ["odd"]

    def test_null_level_from_older_rows_reads_as_cantrip(self, store):
        store.store_records(Category.SPELLS, [FIREBALL])
        with store._conn:
            store._conn.execute("UPDATE open5e_spells SET level = NULL")

        assert store.get_by_slug(Category.SPELLS, "fireball").level == 0

    def test_object_shaped_asi_survives_round_trip(self, store):
        store.store_records(Category.RACES, [
            {"slug": "elf", "name": "Elf", "asi": {"dexterity": 2}, "speed": [30]},
        ])

        elf = store.get_by_slug(Category.RACES, "elf")
        assert elf.ability_scores == {"dexterity": 2}
        assert elf.speed == [30]

    def test_missing_slug_is_none(self, store):
        assert store.get_by_slug(Category.FEATS, "alert") is None


class TestFilteredQueries:
    """Tests for category filters and ordering."""

    def test_spells_ordered_by_level_then_name(self, store):
        store.store_records(Category.SPELLS, [FIREBALL, DETECT_MAGIC, FIRE_BOLT])
        assert [s.slug for s in store.get_spells()] == ["fire-bolt", "detect-magic", "fireball"]

    def test_spell_filters(self, store):
        store.store_records(Category.SPELLS, [FIREBALL, DETECT_MAGIC, FIRE_BOLT])

        assert [s.slug for s in store.get_spells(level=3)] == ["fireball"]
        assert [s.slug for s in store.get_spells(level=0)] == ["fire-bolt"]
        assert [s.slug for s in store.get_spells(school="Divination")] == ["detect-magic"]
        assert [s.slug for s in store.get_spells(dnd_class="cleric")] == ["detect-magic"]
        assert len(store.get_spells(school="evocation", dnd_class="wizard")) == 2

    def test_monster_filters(self, store):
        store.store_records(Category.MONSTERS, [ADULT_RED_DRAGON, ORC, GOBLIN])

        assert [m.slug for m in store.get_monsters()] == ["goblin", "orc", "adult-red-dragon"]
        assert [m.slug for m in store.get_monsters(cr=0.5)] == ["orc"]
        assert [m.slug for m in store.get_monsters(type="humanoid")] == ["goblin", "orc"]

    def test_weapon_filter(self, store):
        store.store_records(Category.WEAPONS, [LONGSWORD, DAGGER])

        assert [w.slug for w in store.get_weapons()] == ["longsword", "dagger"]
        assert [w.slug for w in store.get_weapons("simple melee weapons")] == ["dagger"]
        assert store.get_by_slug(Category.WEAPONS, "dagger").properties == ["finesse", "light", "thrown"]

    def test_magic_item_filter(self, store):
        store.store_records(Category.MAGIC_ITEMS, [VORPAL_SWORD, BAG_OF_HOLDING])

        assert [i.slug for i in store.get_magic_items(rarity="legendary")] == ["vorpal-sword"]
        assert len(store.get_magic_items()) == 2


class TestSearch:
    """Tests for cross-category substring search."""

    def test_hits_are_tagged_and_grouped_by_category(self, store):
        store.store_records(Category.SPELLS, [FIREBALL, FIRE_BOLT, DETECT_MAGIC])
        store.store_records(Category.MONSTERS, [ADULT_RED_DRAGON])
        store.store_records(Category.RACES, [ELF])

        results = store.search("fire")

        assert [(r.category, r.slug) for r in results] == [
            ("spell", "fire-bolt"),
            ("spell", "fireball"),
        ]

    def test_search_matches_description(self, store):
        store.store_records(Category.RACES, [ELF])
        store.store_records(Category.SPELLS, [DETECT_MAGIC])

        results = store.search("MAGIC")

        assert [(r.category, r.slug) for r in results] == [
            ("race", "elf"),
            ("spell", "detect-magic"),
        ]

    def test_limit_applies_per_category(self, store):
        store.store_records(Category.SPELLS, [FIREBALL, FIRE_BOLT, DETECT_MAGIC])
        store.store_records(Category.MONSTERS, [GOBLIN, ORC])

        results = store.search("o", limit=1)

        assert [r.category for r in results] == ["spell", "monster"]

    def test_wildcards_are_literal(self, store):
        store.store_records(Category.SPELLS, [FIREBALL])
        assert store.search("%") == []
        assert store.search("_") == []


class TestLoadStatus:
    """Tests for load bookkeeping helpers."""

    def test_is_data_loaded_requires_core_categories(self, store):
        assert store.is_data_loaded() is False

        store.store_records(Category.RACES, [ELF])
        store.store_records(Category.CLASSES, [{"slug": "wizard", "name": "Wizard"}])
        assert store.is_data_loaded() is False

        store.store_records(Category.BACKGROUNDS, [{"slug": "sage", "name": "Sage"}])
        assert store.is_data_loaded() is True

    def test_empty_core_category_is_not_loaded(self, store):
        store.store_records(Category.RACES, [ELF])
        store.store_records(Category.CLASSES, [{"slug": "wizard", "name": "Wizard"}])
        store.store_records(Category.BACKGROUNDS, [])

        assert store.get_load_status(Category.BACKGROUNDS).item_count == 0
        assert store.is_data_loaded() is False

    def test_get_all_load_status(self, store):
        store.store_records(Category.SPELLS, [FIREBALL])
        store.store_records(Category.MAGIC_ITEMS, [BAG_OF_HOLDING])

        statuses = store.get_all_load_status()
        assert [s.category for s in statuses] == [Category.MAGIC_ITEMS, Category.SPELLS]

    def test_clear_all(self, store):
        store.store_records(Category.SPELLS, [FIREBALL])
        store.store_records(Category.RACES, [ELF])

        store.clear_all()

        assert store.count(Category.SPELLS) == 0
        assert store.get_all_load_status() == []
