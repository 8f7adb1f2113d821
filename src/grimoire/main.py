"""
grimoire MCP server and entry points.

Exposes the reference subsystem as FastMCP tools. The warmup scheduler runs
for the lifetime of the server.
"""

import contextlib
import json
import logging
from typing import Annotated, AsyncIterator

import uvicorn
from fastmcp import FastMCP
from pydantic import Field

from .api import create_app
from .config import Settings
from .context import ReferenceContext
from .exceptions import GrimoireError, UpstreamError

logger = logging.getLogger("grimoire")


class ReferenceTools:
    """Tool bodies, kept apart from registration so they can be called directly."""

    def __init__(self, context: ReferenceContext):
        self.context = context
        self.service = context.service

    async def lookup_reference(
        self,
        category: str,
        slug: str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> str:
        try:
            data = await self.service.lookup(category, slug=slug, search=search, limit=limit)
        except ValueError as e:
            return f"❌ {e}"
        except UpstreamError as e:
            logger.warning(f"Open5e lookup failed: {e.message}")
            return "❌ Open5e is unavailable right now, try again later."
        return json.dumps(data, indent=2)

    def search_reference(self, query: str, limit: int = 10) -> str:
        try:
            results = self.service.search(query, limit)
        except ValueError as e:
            return f"❌ {e}"
        if not results:
            return f"🔍 No reference entries match '{query}'."
        lines = [f"🔍 {len(results)} results for '{query}':"]
        for result in results:
            lines.append(f"- [{result.category}] {result.name} (`{result.slug}`)")
        return "\n".join(lines)

    def reference_status(self) -> str:
        status = self.service.status()
        lines = [
            "**Reference store:** " + ("loaded ✅" if status["data_loaded"] else "not loaded ❌")
        ]
        for row in status["load_status"]:
            lines.append(f"- {row['category']}: {row['item_count']} items (loaded {row['last_loaded']})")
        lines.append("**Cache:**")
        if not status["cache"]:
            lines.append("- empty")
        for row in status["cache"]:
            lines.append(f"- {row['category']}: {row['total_items']} entries (updated {row['last_updated']})")
        return "\n".join(lines)

    async def reset_reference_cache(self) -> str:
        try:
            failures = await self.context.scheduler.reset_cache()
        except GrimoireError as e:
            logger.error(f"Cache reset failed: {e.message}")
            return f"❌ Cache reset failed: {e.message}"
        if failures:
            failed = ", ".join(category.value for category in failures)
            return f"⚠️ Cache reset complete, but warming failed for: {failed}"
        return "✅ Cache reset complete"

    async def load_reference_data(self, force: bool = False) -> str:
        try:
            loaded = await self.context.loader.load(force=force)
        except GrimoireError as e:
            logger.error(f"Open5e load failed: {e.message}")
            return f"❌ Failed to load reference data: {e.message}"
        if not loaded:
            return "📚 Reference data already loaded."
        summary = ", ".join(f"{count} {category.value}" for category, count in loaded.items())
        return f"✅ Loaded {summary}"


def build_server(context: ReferenceContext, schedule: bool = True) -> FastMCP:
    """Create the FastMCP server with every reference tool registered."""

    @contextlib.asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        if schedule:
            context.scheduler.start()
        try:
            yield
        finally:
            await context.aclose()

    mcp = FastMCP(name="grimoire", lifespan=lifespan)
    tools = ReferenceTools(context)

    @mcp.tool
    async def lookup_reference(
        category: Annotated[str, Field(description="Open5e category, e.g. 'spells', 'monsters', 'magicitems'")],
        slug: Annotated[str | None, Field(description="Exact slug of one entry (excludes search)")] = None,
        search: Annotated[str | None, Field(description="Substring to search for (excludes slug)")] = None,
        limit: Annotated[int | None, Field(description="Maximum entries to return", ge=1, le=100)] = None,
    ) -> str:
        """Look up live Open5e data, served from the cache when possible."""
        return await tools.lookup_reference(category, slug=slug, search=search, limit=limit)

    @mcp.tool
    def search_reference(
        query: Annotated[str, Field(description="Case-insensitive text to find in names and descriptions")],
        limit: Annotated[int, Field(description="Maximum hits per category", ge=1, le=100)] = 10,
    ) -> str:
        """Search every category of the local reference store."""
        return tools.search_reference(query, limit)

    @mcp.tool
    def reference_status() -> str:
        """Show what reference data is loaded and what is cached."""
        return tools.reference_status()

    @mcp.tool
    async def reset_reference_cache() -> str:
        """Clear the Open5e cache and warm it again."""
        return await tools.reset_reference_cache()

    @mcp.tool
    async def load_reference_data(
        force: Annotated[bool, Field(description="Wipe and reload every category")] = False,
    ) -> str:
        """Load missing Open5e categories into the local reference store."""
        return await tools.load_reference_data(force)

    logger.debug("✅ Reference tools registered")
    return mcp


def _bootstrap() -> ReferenceContext:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    logger.debug(f"📂 Data dir: {settings.data_dir.resolve()}")
    return ReferenceContext.from_settings(settings)


def main() -> None:
    """Main entry point for the grimoire MCP server."""
    build_server(_bootstrap()).run()


def serve() -> None:
    """Entry point for the grimoire HTTP server."""
    context = _bootstrap()
    uvicorn.run(
        create_app(context),
        host=context.settings.host,
        port=context.settings.port,
        log_level=context.settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
