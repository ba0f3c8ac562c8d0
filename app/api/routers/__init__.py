"""
app/api/routers package marker.
"""

from app.api.routers.market_intel_scrape import router as market_intel_scrape_router

__all__ = [
    "market_intel_scrape_router",
]
