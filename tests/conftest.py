"""
Pytest configuration and fixtures for grimoire tests.
"""

import sys
from pathlib import Path

import httpx
import pytest

# Add src directory to Python path to allow importing grimoire
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


API_URL = "https://open5e.test/v1"


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Manually advanced clock for TTL and rate-limit tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOpen5e:
    """
    In-process stand-in for the Open5e API, served through httpx.MockTransport.

    Listings are paginated `page_size` at a time with absolute `next` links,
    `search` filters on name, and `/{category}/{slug}/` returns one record.
    Categories listed in `failures` always answer with that status code.
    """

    def __init__(self, data: dict[str, list[dict]] | None = None, page_size: int = 10):
        self.data = data or {}
        self.page_size = page_size
        self.failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, category: str | None = None) -> int:
        if category is None:
            return len(self.requests)
        return sum(1 for r in self.requests if r.url.path.split("/")[2] == category)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = [p for p in request.url.path.split("/") if p]
        category = parts[1]

        if category in self.failures:
            return httpx.Response(
                self.failures[category],
                json={"detail": "upstream exploded: internal trace 0xdeadbeef"},
            )

        records = self.data.get(category)
        if records is None:
            return httpx.Response(404, json={"detail": "Not found."})

        if len(parts) > 2:
            for record in records:
                if record["slug"] == parts[2]:
                    return httpx.Response(200, json=record)
            return httpx.Response(404, json={"detail": "Not found."})

        search = request.url.params.get("search")
        if search:
            records = [r for r in records if search.lower() in r["name"].lower()]

        page = int(request.url.params.get("page", "1"))
        start = (page - 1) * self.page_size
        end = start + self.page_size
        next_url = None
        if end < len(records):
            next_url = str(request.url.copy_set_param("page", page + 1))

        return httpx.Response(200, json={
            "count": len(records),
            "next": next_url,
            "previous": None,
            "results": records[start:end],
        })


def make_records(prefix: str, count: int) -> list[dict]:
    """Minimal upstream records named '<prefix> 01', '<prefix> 02'..."""
    return [
        {"slug": f"{prefix}-{i:02d}", "name": f"{prefix.title()} {i:02d}", "desc": f"A {prefix}."}
        for i in range(1, count + 1)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_open5e() -> FakeOpen5e:
    """Fake API with a handful of records in every category."""
    return FakeOpen5e({
        "races": make_records("race", 3),
        "classes": make_records("class", 4),
        "backgrounds": make_records("background", 2),
        "spells": make_records("spell", 45),
        "monsters": make_records("monster", 12),
        "weapons": make_records("weapon", 8),
        "magicitems": make_records("item", 25),
        "feats": make_records("feat", 1),
    })


@pytest.fixture(name="make_records")
def make_records_fixture():
    return make_records
