"""
Schemas for market-intelligence scrape trigger, progress and status endpoints.

Responses are serialized with camelCase keys.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.domain.market_intel import (
    CurrentAction,
    JobProgress,
    OrgScrapeConfig,
    ScrapeJob,
    ScrapeRunLogEntry,
    ScrapeSubmission,
)
from app.market_intel.progress import ProgressReport, summarize


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScrapeTriggerRequest(CamelModel):
    platforms: list[str] | None = Field(
        default=None,
        description="Optional subset of the tenant's configured platforms",
    )


class ScrapeTriggerResponse(CamelModel):
    success: bool = True
    job_id: UUID
    platforms: list[str]
    substrate: str
    external_job_name: str | None = None


class ScrapeErrorResponse(CamelModel):
    success: bool = False
    error: str
    job_id: UUID | None = None


class CurrentActionResponse(CamelModel):
    type: str
    message: str
    property_title: str | None = None
    platform: str | None = None
    page: int | None = None


class PlatformProgressResponse(CamelModel):
    status: str
    total: int
    passed: int
    failed: int
    errors: list[str] = Field(default_factory=list)


class ProgressSummaryResponse(CamelModel):
    total_analyzed: int
    total_passed: int
    total_failed: int
    unique_errors: list[str] = Field(default_factory=list)


class ScrapeProgressResponse(CamelModel):
    job_id: UUID
    status: str
    platforms: list[str]
    current_platform: str | None = None
    current_action: CurrentActionResponse | None = None
    progress: dict[str, PlatformProgressResponse] = Field(default_factory=dict)
    summary: ProgressSummaryResponse
    started_at: datetime | None = None
    completed_at: datetime | None = None
    elapsed_seconds: int | None = None
    error_message: str | None = None
    substrate: str
    external_job_name: str | None = None


class ScrapeJobSummaryResponse(CamelModel):
    id: UUID
    status: str
    platforms: list[str]
    summary: ProgressSummaryResponse
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None


class ScrapeRunLogResponse(CamelModel):
    id: UUID
    platform: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    listings_found: int = 0
    listings_new: int = 0
    listings_updated: int = 0
    listings_deactivated: int = 0
    duration_ms: int | None = None


class OrgScrapeConfigResponse(CamelModel):
    is_enabled: bool
    status: str
    platforms: list[str]
    target_areas: list[str] = Field(default_factory=list)
    scrape_frequency: str
    min_successful_platforms: int
    consecutive_failures: int
    last_scrape_at: datetime | None = None
    next_scrape_at: datetime | None = None
    last_error: str | None = None


class ScrapeStatusResponse(CamelModel):
    configured: bool
    config: OrgScrapeConfigResponse | None = None
    active_job: ScrapeProgressResponse | None = None
    recent_jobs: list[ScrapeJobSummaryResponse] = Field(default_factory=list)
    recent_logs: list[ScrapeRunLogResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Domain -> response mapping
# ---------------------------------------------------------------------------


def _action_response(action: CurrentAction | None) -> CurrentActionResponse | None:
    if action is None:
        return None
    return CurrentActionResponse(
        type=action.type,
        message=action.message,
        property_title=action.property_title,
        platform=action.platform,
        page=action.page,
    )


def _progress_response(progress: JobProgress) -> dict[str, PlatformProgressResponse]:
    return {
        platform: PlatformProgressResponse(
            status=item.status,
            total=item.total,
            passed=item.passed,
            failed=item.failed,
            errors=list(item.errors),
        )
        for platform, item in progress.platforms.items()
    }


def to_trigger_response(submission: ScrapeSubmission) -> ScrapeTriggerResponse:
    return ScrapeTriggerResponse(
        job_id=submission.job_id,
        platforms=list(submission.platforms),
        substrate=submission.substrate,
        external_job_name=submission.external_job_name,
    )


def to_progress_response(report: ProgressReport) -> ScrapeProgressResponse:
    return ScrapeProgressResponse(
        job_id=report.job_id,
        status=report.status,
        platforms=list(report.platforms),
        current_platform=report.current_platform,
        current_action=_action_response(report.current_action),
        progress=_progress_response(report.progress),
        summary=ProgressSummaryResponse(
            total_analyzed=report.summary.total_analyzed,
            total_passed=report.summary.total_passed,
            total_failed=report.summary.total_failed,
            unique_errors=list(report.summary.unique_errors),
        ),
        started_at=report.started_at,
        completed_at=report.completed_at,
        elapsed_seconds=report.elapsed_seconds,
        error_message=report.error_message,
        substrate=report.substrate,
        external_job_name=report.external_job_name,
    )


def to_job_summary_response(job: ScrapeJob) -> ScrapeJobSummaryResponse:
    summary = summarize(job.progress)
    return ScrapeJobSummaryResponse(
        id=job.id,
        status=job.status,
        platforms=list(job.platforms),
        summary=ProgressSummaryResponse(
            total_analyzed=summary.total_analyzed,
            total_passed=summary.total_passed,
            total_failed=summary.total_failed,
            unique_errors=list(summary.unique_errors),
        ),
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        error_message=job.error_message,
    )


def to_run_log_response(entry: ScrapeRunLogEntry) -> ScrapeRunLogResponse:
    return ScrapeRunLogResponse(
        id=entry.id,
        platform=entry.platform,
        status=entry.status,
        started_at=entry.started_at,
        completed_at=entry.completed_at,
        listings_found=entry.listings_found,
        listings_new=entry.listings_new,
        listings_updated=entry.listings_updated,
        listings_deactivated=entry.listings_deactivated,
        duration_ms=entry.duration_ms,
    )


def to_config_response(config: OrgScrapeConfig | None) -> OrgScrapeConfigResponse | None:
    if config is None:
        return None
    return OrgScrapeConfigResponse(
        is_enabled=config.is_enabled,
        status=config.status,
        platforms=list(config.platforms),
        target_areas=list(config.target_areas),
        scrape_frequency=config.scrape_frequency,
        min_successful_platforms=config.min_successful_platforms,
        consecutive_failures=config.consecutive_failures,
        last_scrape_at=config.last_scrape_at,
        next_scrape_at=config.next_scrape_at,
        last_error=config.last_error,
    )
