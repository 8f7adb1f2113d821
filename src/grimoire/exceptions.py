"""
Exception hierarchy for the grimoire reference-data service.

Every error raised by the fetch client, cache, store and loader derives from
GrimoireError so callers at the HTTP and MCP edges can handle them uniformly.
"""

from __future__ import annotations

from typing import Any


class GrimoireError(Exception):
    """Base exception for all grimoire errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary of additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UpstreamError(GrimoireError):
    """The Open5e API failed to answer a request.

    4xx responses are permanent (not retried). 5xx responses and network
    failures are transient and only surface after the retry budget is spent.

    Attributes:
        status_code: HTTP status of the failed response, None for network errors
        category: Reference category the request was made for
        context: Diagnostic context (request URL, response body)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        category: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=context)
        self.status_code = status_code
        self.category = category
        self.context = context or {}

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same request could succeed."""
        return self.status_code is None or 500 <= self.status_code < 600

    def __repr__(self) -> str:
        return (
            f"UpstreamError({self.message!r}, status_code={self.status_code}, "
            f"category={self.category!r})"
        )


class CacheReadError(GrimoireError):
    """A persisted cache payload could not be decoded.

    Internal only: the cache logs it and reports a miss.
    """

    def __init__(self, message: str, key: str):
        super().__init__(message, details={"key": key})
        self.key = key


class StoreWriteError(GrimoireError):
    """A bulk upsert into the reference store failed and was rolled back."""

    def __init__(self, message: str, category: str, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.category = category


class ConfigurationError(GrimoireError):
    """Settings are missing or invalid. Raised at startup, before serving."""
    pass


__all__ = [
    "GrimoireError",
    "UpstreamError",
    "CacheReadError",
    "StoreWriteError",
    "ConfigurationError",
]
