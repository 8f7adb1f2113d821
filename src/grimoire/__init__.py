"""
grimoire - Open5e reference data cache and ingestion for tabletop tooling.
"""

from .config import Settings
from .context import ReferenceContext
from .exceptions import (
    GrimoireError,
    UpstreamError,
    CacheReadError,
    StoreWriteError,
    ConfigurationError,
)

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("grimoire")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable

__all__ = [
    "Settings",
    "ReferenceContext",
    "GrimoireError",
    "UpstreamError",
    "CacheReadError",
    "StoreWriteError",
    "ConfigurationError",
]
