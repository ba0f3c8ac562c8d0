"""
app/domain package marker.
"""

from app.domain.market_intel import (
    CanonicalListing,
    JobProgress,
    OrgScrapeConfig,
    ProgressDelta,
    RawListing,
    ScrapeFilters,
    ScrapeJob,
    ScrapeRequest,
)

__all__ = [
    "CanonicalListing",
    "JobProgress",
    "OrgScrapeConfig",
    "ProgressDelta",
    "RawListing",
    "ScrapeFilters",
    "ScrapeJob",
    "ScrapeRequest",
]
