"""
Repository for per-tenant scrape configuration.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from db.models.org_scrape_config import OrgScrapeConfigRecord


class OrgScrapeConfigRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, tenant_id: str) -> OrgScrapeConfigRecord | None:
        return self._session.get(OrgScrapeConfigRecord, tenant_id)

    def get_for_update(self, tenant_id: str) -> OrgScrapeConfigRecord | None:
        stmt = (
            select(OrgScrapeConfigRecord)
            .where(OrgScrapeConfigRecord.tenant_id == tenant_id)
            .with_for_update()
        )
        return self._session.scalars(stmt).first()

    def list_due(self, *, now: datetime, limit: int = 50) -> list[OrgScrapeConfigRecord]:
        stmt = (
            select(OrgScrapeConfigRecord)
            .where(
                OrgScrapeConfigRecord.is_enabled.is_(True),
                OrgScrapeConfigRecord.status == "ACTIVE",
                or_(
                    OrgScrapeConfigRecord.next_scrape_at.is_(None),
                    OrgScrapeConfigRecord.next_scrape_at <= now,
                ),
            )
            .order_by(OrgScrapeConfigRecord.next_scrape_at.asc().nulls_first())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())
