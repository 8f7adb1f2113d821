"""
HTTP surface for grimoire reference data.

Routes:
- GET  /api/data/{category}?slug=|search=&limit= - Cached-or-fetched Open5e data
- POST /api/data/reset - Clear the cache and warm it again
- GET  /api/data/status - Store load status and cache metadata
- GET  /api/reference/search?q=&limit= - Search the local reference store
- GET  /api/reference/{category} - Stored records, category filters as query params
- GET  /api/reference/{category}/{slug} - One stored record

The warmup scheduler runs for the lifetime of the app.
"""

import contextlib
import logging
from typing import AsyncIterator

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .context import ReferenceContext
from .exceptions import UpstreamError

logger = logging.getLogger("grimoire.api")

UPSTREAM_UNAVAILABLE = "Reference data is unavailable right now, please try again later"
INTERNAL_ERROR = "Failed to fetch D&D data"


class ReferenceAPI:
    """Request handlers bound to one ReferenceContext."""

    def __init__(self, context: ReferenceContext):
        self.context = context
        self.service = context.service

    def routes(self) -> list[Route]:
        # Static paths before parameterized ones
        return [
            Route("/api/data/reset", self.post_reset, methods=["POST"]),
            Route("/api/data/status", self.get_status, methods=["GET"]),
            Route("/api/data/{category}", self.get_data, methods=["GET"]),
            Route("/api/reference/search", self.search_reference, methods=["GET"]),
            Route("/api/reference/{category}", self.list_reference, methods=["GET"]),
            Route("/api/reference/{category}/{slug}", self.get_reference, methods=["GET"]),
        ]

    async def get_data(self, request: Request) -> Response:
        """
        Cached-or-fetched Open5e data.

        Upstream failures answer 400 without the upstream message; anything
        unexpected answers 500.
        """
        params = request.query_params
        try:
            data = await self.service.lookup(
                request.path_params["category"],
                slug=params.get("slug"),
                search=params.get("search"),
                limit=params.get("limit"),
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except UpstreamError as e:
            logger.warning(f"Open5e lookup failed: {e.message} (status {e.status_code})")
            return JSONResponse({"error": UPSTREAM_UNAVAILABLE}, status_code=400)
        except Exception as e:
            logger.error(f"Unexpected error serving {request.url.path}: {e}")
            return JSONResponse({"error": INTERNAL_ERROR}, status_code=500)
        return JSONResponse(data)

    async def post_reset(self, request: Request) -> Response:
        """Clear the cache and run a full warmup before answering."""
        try:
            await self.context.scheduler.reset_cache()
        except Exception as e:
            logger.error(f"Cache reset failed: {e}")
            return JSONResponse(
                {"success": False, "message": "Cache reset failed"},
                status_code=500,
            )
        return JSONResponse({"success": True, "message": "Cache reset complete"})

    async def get_status(self, request: Request) -> Response:
        return JSONResponse(self.service.status())

    async def search_reference(self, request: Request) -> Response:
        params = request.query_params
        try:
            results = self.service.search(params.get("q", ""), params.get("limit", 10))
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse([result.model_dump(mode="json") for result in results])

    async def list_reference(self, request: Request) -> Response:
        try:
            records = self.service.list_records(
                request.path_params["category"],
                dict(request.query_params),
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse([record.model_dump(mode="json") for record in records])

    async def get_reference(self, request: Request) -> Response:
        category = request.path_params["category"]
        slug = request.path_params["slug"]
        try:
            record = self.service.get_record(category, slug)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        if record is None:
            return JSONResponse(
                {"error": f"No {category} with slug '{slug}'"},
                status_code=404,
            )
        return JSONResponse(record.model_dump(mode="json"))


def create_app(context: ReferenceContext, schedule: bool = True) -> Starlette:
    """
    Build the Starlette app.

    Args:
        context: Wired reference subsystem
        schedule: Start the warmup/cleanup loops on startup
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if schedule:
            context.scheduler.start()
        try:
            yield
        finally:
            await context.aclose()

    api = ReferenceAPI(context)
    return Starlette(debug=False, routes=api.routes(), lifespan=lifespan)


__all__ = [
    "ReferenceAPI",
    "create_app",
]
