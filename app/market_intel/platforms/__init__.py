"""
Listing platform exports.
"""

from app.market_intel.platforms.base import (
    FetchContext,
    FetchResult,
    PlatformFetcher,
    PlatformSpec,
)
from app.market_intel.platforms.registry import PlatformRegistry

__all__ = [
    "FetchContext",
    "FetchResult",
    "PlatformFetcher",
    "PlatformRegistry",
    "PlatformSpec",
]
