"""
Repository for scrape job lifecycle persistence and active-job lookup.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from db.models.scrape_job import ScrapeJobRecord

ACTIVE_STATUSES = ("PENDING", "RUNNING")


class ScrapeJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(
        self,
        *,
        tenant_id: str,
        platforms: list[str],
        progress: dict[str, Any],
        substrate: str,
    ) -> ScrapeJobRecord:
        job = ScrapeJobRecord(
            tenant_id=tenant_id,
            status="PENDING",
            platforms=platforms,
            progress=progress,
            substrate=substrate,
        )
        self._session.add(job)
        self._session.flush()
        self._session.refresh(job)
        return job

    def get_job(self, job_id: uuid.UUID) -> ScrapeJobRecord | None:
        return self._session.get(ScrapeJobRecord, job_id)

    def get_job_for_update(self, job_id: uuid.UUID) -> ScrapeJobRecord | None:
        stmt = select(ScrapeJobRecord).where(ScrapeJobRecord.id == job_id).with_for_update()
        return self._session.scalars(stmt).first()

    def find_active_job(self, tenant_id: str) -> ScrapeJobRecord | None:
        stmt = (
            select(ScrapeJobRecord)
            .where(
                ScrapeJobRecord.tenant_id == tenant_id,
                ScrapeJobRecord.status.in_(ACTIVE_STATUSES),
            )
            .order_by(ScrapeJobRecord.created_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_jobs(self, *, tenant_id: str, limit: int = 5) -> list[ScrapeJobRecord]:
        stmt: Select[tuple[ScrapeJobRecord]] = (
            select(ScrapeJobRecord)
            .where(ScrapeJobRecord.tenant_id == tenant_id)
            .order_by(ScrapeJobRecord.created_at.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def update_if_status(
        self,
        *,
        job_id: uuid.UUID,
        allowed_statuses: Iterable[str],
        values: dict[str, Any],
    ) -> bool:
        """
        Apply `values` only while the row is in one of `allowed_statuses`.

        Returns False when the row is missing or already moved on, which is
        how late writers lose against cancellation and terminal states.
        """

        stmt = (
            update(ScrapeJobRecord)
            .where(
                ScrapeJobRecord.id == job_id,
                ScrapeJobRecord.status.in_(tuple(allowed_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        return bool(result.rowcount)
