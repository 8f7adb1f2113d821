"""
Tests for the MCP tool bodies and server wiring.

These exercise the logic behind the MCP tools by calling ReferenceTools
directly against a context backed by the fake Open5e API.
"""

import json
from unittest.mock import patch

import pytest
from fastmcp import FastMCP

from grimoire.config import Settings
from grimoire.context import ReferenceContext
from grimoire.main import ReferenceTools, build_server, main
from grimoire.reference.models import Category

pytestmark = pytest.mark.anyio


@pytest.fixture
def context(tmp_path, fake_open5e) -> ReferenceContext:
    settings = Settings(
        api_url="https://open5e.test/v1",
        data_dir=tmp_path,
        max_retries=1,
        retry_initial_delay=0,
        retry_max_delay=0,
    )
    return ReferenceContext.from_settings(settings, transport=fake_open5e.transport())


@pytest.fixture
def tools(context) -> ReferenceTools:
    return ReferenceTools(context)


class TestLookupTool:

    async def test_returns_json(self, tools):
        result = await tools.lookup_reference("spells", limit=2)
        assert [s["slug"] for s in json.loads(result)] == ["spell-01", "spell-02"]

    async def test_invalid_input(self, tools):
        result = await tools.lookup_reference("spells", slug="a", search="b")
        assert result.startswith("❌")

    async def test_upstream_failure_is_reported(self, tools, fake_open5e):
        fake_open5e.failures["feats"] = 502
        result = await tools.lookup_reference("feats")
        assert "unavailable" in result
        assert "0xdeadbeef" not in result


class TestStoreTools:

    async def test_load_then_search(self, tools, context):
        result = await tools.load_reference_data()
        assert result.startswith("✅ Loaded")
        assert "45 spells" in result

        again = await tools.load_reference_data()
        assert again == "📚 Reference data already loaded."

        found = tools.search_reference("background 01")
        assert "[background] Background 01 (`background-01`)" in found

    async def test_load_failure(self, tools, fake_open5e):
        fake_open5e.failures["spells"] = 503
        result = await tools.load_reference_data()
        assert result.startswith("❌ Failed to load reference data")

    def test_search_no_results(self, tools):
        assert "No reference entries" in tools.search_reference("zzz")

    def test_search_empty_query(self, tools):
        assert tools.search_reference("").startswith("❌")

    def test_status(self, tools, context):
        context.store.store_records(Category.RACES, [{"slug": "elf", "name": "Elf"}])
        status = tools.reference_status()
        assert "not loaded" in status
        assert "- races: 1 items" in status
        assert "- empty" in status


class TestResetTool:

    async def test_reset(self, tools, context):
        assert await tools.reset_reference_cache() == "✅ Cache reset complete"
        assert context.cache.get("races:all:all") is not None

    async def test_partial_reset(self, tools, fake_open5e):
        fake_open5e.failures["weapons"] = 500
        result = await tools.reset_reference_cache()
        assert result.startswith("⚠️")
        assert "weapons" in result

    async def test_core_failure(self, tools, fake_open5e):
        fake_open5e.failures["races"] = 500
        assert (await tools.reset_reference_cache()).startswith("❌ Cache reset failed")


class TestServer:

    def test_build_server(self, context):
        server = build_server(context, schedule=False)
        assert isinstance(server, FastMCP)
        assert server.name == "grimoire"

    def test_main_runs_server(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRIMOIRE_DATA_DIR", str(tmp_path))

        with patch.object(FastMCP, "run") as run:
            main()

        run.assert_called_once()
