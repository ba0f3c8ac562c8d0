"""
Consumer-facing progress reports for scrape jobs.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from app.domain.market_intel import CurrentAction, JobProgress, ScrapeJob
from db.base import utcnow


@dataclass(frozen=True)
class ProgressSummary:
    total_analyzed: int
    total_passed: int
    total_failed: int
    unique_errors: tuple[str, ...]


@dataclass(frozen=True)
class ProgressReport:
    job_id: uuid.UUID
    status: str
    platforms: tuple[str, ...]
    current_platform: str | None
    current_action: CurrentAction | None
    progress: JobProgress
    summary: ProgressSummary
    started_at: datetime | None
    completed_at: datetime | None
    elapsed_seconds: int | None
    error_message: str | None
    substrate: str
    external_job_name: str | None


def summarize(progress: JobProgress) -> ProgressSummary:
    errors: dict[str, None] = {}
    for platform in progress.platforms.values():
        for error in platform.errors:
            errors.setdefault(error, None)
    return ProgressSummary(
        total_analyzed=sum(item.total for item in progress.platforms.values()),
        total_passed=sum(item.passed for item in progress.platforms.values()),
        total_failed=sum(item.failed for item in progress.platforms.values()),
        unique_errors=tuple(errors),
    )


def build_progress_report(job: ScrapeJob, *, now: datetime | None = None) -> ProgressReport:
    elapsed_seconds = None
    if job.started_at is not None:
        end = job.completed_at or now or utcnow()
        elapsed_seconds = max(0, int((end - job.started_at).total_seconds()))

    return ProgressReport(
        job_id=job.id,
        status=job.status,
        platforms=job.platforms,
        current_platform=job.current_platform,
        current_action=job.current_action if job.is_active else None,
        progress=job.progress,
        summary=summarize(job.progress),
        started_at=job.started_at,
        completed_at=job.completed_at,
        elapsed_seconds=elapsed_seconds,
        error_message=job.error_message,
        substrate=job.substrate,
        external_job_name=job.external_job_name,
    )
