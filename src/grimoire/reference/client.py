"""
Open5e API client.

Every request goes through a shared fixed-window rate limiter and a bounded
exponential-backoff retry loop. Failures leave this module as UpstreamError,
carrying the HTTP status (when there was one) and the request context.
"""

import asyncio
import logging
import time
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..exceptions import UpstreamError
from .models import Category, Page, RawRecord

logger = logging.getLogger("grimoire.client")


# API Configuration
OPEN5E_API_BASE = "https://api.open5e.com/v1"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_INITIAL_DELAY = 1.0
RETRY_MAX_DELAY = 10.0
RATE_LIMIT_REQUESTS = 100
RATE_LIMIT_WINDOW = 60.0


class RateLimiter:
    """
    Fixed-window request limiter.

    At most `max_requests` permits are granted per window. A caller arriving
    at the limit sleeps until the window ends, then a fresh window starts.
    Waiters are served one at a time in arrival order.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_REQUESTS,
        window: float = RATE_LIMIT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._lock = asyncio.Lock()
        self._window_start = clock()
        self._count = 0

    @property
    def count(self) -> int:
        """Permits granted in the current window."""
        return self._count

    async def acquire(self) -> None:
        """Wait for and take one permit."""
        async with self._lock:
            now = self._clock()
            if now - self._window_start >= self.window:
                self._window_start = now
                self._count = 0

            if self._count >= self.max_requests:
                wait = self.window - (now - self._window_start)
                if wait > 0:
                    logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
                    await asyncio.sleep(wait)
                self._window_start = self._clock()
                self._count = 0

            self._count += 1


class RetryPolicy:
    """Bounded exponential backoff.

    `max_retries` is the total number of attempts, so 3 means one first try
    and at most two retries.
    """

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        initial_delay: float = RETRY_INITIAL_DELAY,
        max_delay: float = RETRY_MAX_DELAY,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    def delay(self, attempt: int) -> float:
        """Backoff to sleep after failed attempt number `attempt` (1-based)."""
        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """Only network failures and 5xx responses are retried."""
        if attempt >= self.max_retries:
            return False
        if isinstance(error, httpx.TransportError):
            return True
        return (
            isinstance(error, UpstreamError)
            and error.status_code is not None
            and error.is_transient
        )


class Open5eClient:
    """
    Async client for the Open5e REST API.

    Features:
    - Follows `next` links until the listing is exhausted
    - Shared rate limiter across all requests made by this client
    - Retries network failures and 5xx responses, never 4xx
    - Normalizes every failure into UpstreamError

    Usage:
        async with Open5eClient.from_settings(settings) as client:
            spells = await client.fetch_all(Category.SPELLS)
    """

    def __init__(
        self,
        base_url: str = OPEN5E_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. "https://api.open5e.com/v1"
            timeout: Per-request timeout in seconds
            rate_limiter: Limiter shared by every request from this client
            retry_policy: Backoff policy for transient failures
            transport: Optional httpx transport (used by tests to fake the API)
        """
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "Open5eClient":
        return cls(
            base_url=settings.api_url,
            timeout=settings.request_timeout,
            rate_limiter=RateLimiter(settings.rate_limit_requests, settings.rate_limit_window),
            retry_policy=RetryPolicy(
                settings.max_retries,
                settings.retry_initial_delay,
                settings.retry_max_delay,
            ),
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> "Open5eClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Public operations
    # =========================================================================

    async def fetch_all(
        self,
        category: Category,
        params: dict[str, Any] | None = None,
    ) -> list[RawRecord]:
        """
        Fetch every record of a category, following pagination.

        Query params apply to the first request only; `next` links already
        carry them.

        Raises:
            UpstreamError: If any page fails after retries
        """
        url: str | None = f"{self.base_url}/{category.value}/"
        page_params = params
        results: list[RawRecord] = []
        pages = 0

        while url:
            data = await self._request(url, category, page_params)
            try:
                page = Page[RawRecord].model_validate(data)
            except ValidationError as e:
                raise UpstreamError(
                    f"Malformed {category.value} page from Open5e",
                    category=category.value,
                    context={"url": url, "data": data},
                ) from e
            results.extend(page.results)
            pages += 1
            url = page.next
            page_params = None
            if url:
                logger.debug(f"Fetching next {category.value} page: {url}")

        logger.info(f"Fetched {len(results)} {category.value} from Open5e ({pages} pages)")
        return results

    async def fetch_by_slug(self, category: Category, slug: str) -> RawRecord:
        """
        Fetch one record by slug.

        Raises:
            UpstreamError: 404 when the slug does not exist upstream
        """
        return await self._request(f"{self.base_url}/{category.value}/{slug}/", category)

    async def search(
        self,
        category: Category,
        query: str,
        params: dict[str, Any] | None = None,
    ) -> list[RawRecord]:
        """Full listing of a category filtered by the upstream `search` parameter."""
        merged = dict(params or {})
        merged["search"] = query
        return await self.fetch_all(category, merged)

    # =========================================================================
    # HTTP helpers
    # =========================================================================

    async def _request(
        self,
        url: str,
        category: Category,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(url, category, params)
            except Exception as e:
                error = self._normalize(e, url, category)
                if not self.retry_policy.should_retry(attempt, e):
                    if error is e:
                        raise
                    raise error from e
                delay = self.retry_policy.delay(attempt)
                logger.warning(
                    f"Open5e request failed ({error.message}), "
                    f"attempt {attempt}/{self.retry_policy.max_retries}, retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    async def _attempt(
        self,
        url: str,
        category: Category,
        params: dict[str, Any] | None,
    ) -> dict[str, Any]:
        await self.rate_limiter.acquire()
        response = await self._client.get(url, params=params)
        if response.is_error:
            raise self._status_error(response, url, category)
        data = response.json()
        if not isinstance(data, dict):
            raise UpstreamError(
                f"Unexpected response shape from {url}",
                status_code=response.status_code,
                category=category.value,
                context={"url": url, "data": data},
            )
        return data

    @staticmethod
    def _status_error(response: httpx.Response, url: str, category: Category) -> UpstreamError:
        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        message = f"HTTP {response.status_code} from Open5e"
        if isinstance(body, dict) and body.get("detail"):
            message = str(body["detail"])

        return UpstreamError(
            message,
            status_code=response.status_code,
            category=category.value,
            context={"url": url, "data": body},
        )

    @staticmethod
    def _normalize(error: Exception, url: str, category: Category) -> UpstreamError:
        """Wrap any failure as UpstreamError; already-normalized errors pass through."""
        if isinstance(error, UpstreamError):
            return error
        if isinstance(error, httpx.TransportError):
            message = f"Network error talking to Open5e: {error}"
        else:
            message = f"Unexpected error talking to Open5e: {error}"
        return UpstreamError(
            message,
            category=category.value,
            context={"url": url, "data": None},
        )


__all__ = [
    "RateLimiter",
    "RetryPolicy",
    "Open5eClient",
]
