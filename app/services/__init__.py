"""
app/services package marker.
"""

from app.services.market_intel_scrape_service import (
    MarketIntelScrapeService,
    ScrapeStatusSummary,
    get_market_intel_scrape_service,
)

__all__ = [
    "MarketIntelScrapeService",
    "ScrapeStatusSummary",
    "get_market_intel_scrape_service",
]
