"""
Storage layer exports.
"""

from app.market_intel.storage.base import (
    ListingStore,
    OrgConfigStore,
    RunAuditStore,
    ScrapeJobStore,
)
from app.market_intel.storage.sqlalchemy_storage import (
    SQLAlchemyListingStore,
    SQLAlchemyOrgConfigStore,
    SQLAlchemyRunAuditStore,
    SQLAlchemyScrapeJobStore,
)

__all__ = [
    "ListingStore",
    "OrgConfigStore",
    "RunAuditStore",
    "ScrapeJobStore",
    "SQLAlchemyListingStore",
    "SQLAlchemyOrgConfigStore",
    "SQLAlchemyRunAuditStore",
    "SQLAlchemyScrapeJobStore",
]
