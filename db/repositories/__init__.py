"""
Repository layer exports.
"""

from db.repositories.competitor_listing_repository import CompetitorListingRepository
from db.repositories.org_scrape_config_repository import OrgScrapeConfigRepository
from db.repositories.scrape_job_repository import ScrapeJobRepository
from db.repositories.scrape_run_log_repository import ScrapeRunLogRepository

__all__ = [
    "CompetitorListingRepository",
    "OrgScrapeConfigRepository",
    "ScrapeJobRepository",
    "ScrapeRunLogRepository",
]
