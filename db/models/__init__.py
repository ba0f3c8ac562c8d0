"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.competitor_listing import CompetitorListing, ListingPriceHistory, PriceChangeType
from db.models.org_scrape_config import OrgScrapeConfigRecord
from db.models.scrape_job import ScrapeJobRecord
from db.models.scrape_run_log import ScrapeRunLog

__all__ = [
    "CompetitorListing",
    "ListingPriceHistory",
    "OrgScrapeConfigRecord",
    "PriceChangeType",
    "ScrapeJobRecord",
    "ScrapeRunLog",
]
