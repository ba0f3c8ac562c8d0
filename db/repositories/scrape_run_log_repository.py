"""
Repository for the append-only scrape run audit log.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.scrape_run_log import ScrapeRunLog


class ScrapeRunLogRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(
        self,
        *,
        tenant_id: str,
        platform: str,
        job_id: uuid.UUID | None,
        started_at: datetime,
    ) -> ScrapeRunLog:
        entry = ScrapeRunLog(
            tenant_id=tenant_id,
            platform=platform,
            job_id=job_id,
            status="running",
            started_at=started_at,
            errors=[],
        )
        self._session.add(entry)
        self._session.flush()
        self._session.refresh(entry)
        return entry

    def finish(self, *, entry_id: uuid.UUID, values: dict[str, Any]) -> ScrapeRunLog | None:
        entry = self._session.get(ScrapeRunLog, entry_id)
        if entry is None:
            return None
        for key, value in values.items():
            setattr(entry, key, value)
        self._session.flush()
        return entry

    def list_recent(self, *, tenant_id: str, limit: int = 10) -> list[ScrapeRunLog]:
        stmt = (
            select(ScrapeRunLog)
            .where(ScrapeRunLog.tenant_id == tenant_id)
            .order_by(ScrapeRunLog.started_at.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())
