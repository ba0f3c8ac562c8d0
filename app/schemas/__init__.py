"""
app/schemas package marker.
"""

from app.schemas.market_intel import (
    ScrapeErrorResponse,
    ScrapeProgressResponse,
    ScrapeStatusResponse,
    ScrapeTriggerRequest,
    ScrapeTriggerResponse,
)

__all__ = [
    "ScrapeErrorResponse",
    "ScrapeProgressResponse",
    "ScrapeStatusResponse",
    "ScrapeTriggerRequest",
    "ScrapeTriggerResponse",
]
