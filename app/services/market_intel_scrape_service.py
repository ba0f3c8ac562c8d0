"""
Service for submitting, tracking and cancelling market-intelligence scrapes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from functools import lru_cache

from app.config import MarketIntelSettings, get_market_intel_settings
from app.domain.market_intel import (
    OrgConfigStatus,
    OrgScrapeConfig,
    ScrapeJob,
    ScrapeJobStatus,
    ScrapeRequest,
    ScrapeRunLogEntry,
    ScrapeSubmission,
)
from app.market_intel.errors import ScrapeConfigurationError, ScrapeJobNotFoundError
from app.market_intel.logging_utils import log_event
from app.market_intel.progress import ProgressReport, build_progress_report
from app.market_intel.runtime import MarketIntelStores, build_pipeline, build_sqlalchemy_stores
from app.market_intel.substrates import (
    ClusterSubstrate,
    ExecutionSubstrate,
    InProcessSubstrate,
    TaskExecutor,
    ThreadPoolTaskExecutor,
)
from db.base import utcnow

logger = logging.getLogger(__name__)

SCHEDULING_FAILED_MESSAGE = "Failed to schedule market intelligence scrape job."


@dataclass(frozen=True)
class ScrapeStatusSummary:
    configured: bool
    config: OrgScrapeConfig | None
    active_job: ScrapeJob | None
    recent_jobs: list[ScrapeJob]
    recent_logs: list[ScrapeRunLogEntry]


class MarketIntelScrapeService:
    """
    Validates tenant configuration, creates the job record and hands the run
    to the configured execution substrate.
    """

    def __init__(
        self,
        *,
        settings: MarketIntelSettings,
        stores: MarketIntelStores,
        substrate: ExecutionSubstrate,
    ) -> None:
        self._settings = settings
        self._stores = stores
        self._substrate = substrate

    @property
    def substrate_name(self) -> str:
        return self._substrate.name

    def submit_scrape(
        self,
        *,
        tenant_id: str,
        executor: TaskExecutor | None = None,
        platforms: list[str] | None = None,
    ) -> ScrapeSubmission:
        """
        Create a PENDING job and submit it. Returns as soon as the job is scheduled.

        Raises ScrapeConfigurationError before any job exists and
        ActiveScrapeJobError when the tenant already has an active job.
        """

        request = self.build_request(tenant_id=tenant_id, platforms=platforms)
        job = self._stores.jobs.create_job(
            tenant_id=tenant_id,
            platforms=request.platforms,
            substrate=self._substrate.name,
        )
        log_event(
            logger,
            logging.INFO,
            "scrape_job_created",
            job_id=job.id,
            tenant_id=tenant_id,
            platforms=list(request.platforms),
            substrate=self._substrate.name,
        )

        try:
            submission = self._substrate.submit(job, request, executor=executor)
        except Exception:
            logger.exception("Failed to schedule scrape job %s", job.id)
            self._stores.jobs.finish_job(
                job.id,
                status=ScrapeJobStatus.FAILED,
                completed_at=utcnow(),
                error_message=SCHEDULING_FAILED_MESSAGE,
            )
            raise

        if submission.external_job_name:
            self._stores.jobs.set_external_reference(
                job.id,
                external_job_name=submission.external_job_name,
            )
        return submission

    def build_request(self, *, tenant_id: str, platforms: list[str] | None = None) -> ScrapeRequest:
        config = self._stores.configs.get_config(tenant_id)
        if config is None:
            raise ScrapeConfigurationError("Market Intelligence not configured. Please set up first.")
        if not config.is_enabled:
            raise ScrapeConfigurationError("Market Intelligence is disabled. Please enable it first.")
        if config.status == OrgConfigStatus.PAUSED:
            raise ScrapeConfigurationError("Market Intelligence is paused for this organization.")

        request = config.to_request()
        if platforms is not None:
            selected = tuple(dict.fromkeys(item.strip() for item in platforms if item and item.strip()))
            outside = [item for item in selected if item not in config.platforms]
            if outside:
                raise ScrapeConfigurationError(
                    f"Platforms not enabled for this organization: {', '.join(outside)}"
                )
            request = replace(request, platforms=selected)

        if not request.platforms:
            raise ScrapeConfigurationError("No platforms configured for Market Intelligence.")
        return request

    def get_progress(self, *, tenant_id: str, job_id: uuid.UUID) -> ProgressReport:
        job = self._stores.jobs.get_job(job_id)
        if job is None or job.tenant_id != tenant_id:
            raise ScrapeJobNotFoundError(job_id)
        return build_progress_report(job)

    def cancel(self, *, tenant_id: str, job_id: uuid.UUID) -> ProgressReport:
        job = self._stores.jobs.cancel_job(job_id, tenant_id=tenant_id, cancelled_at=utcnow())
        log_event(
            logger,
            logging.INFO,
            "scrape_job_cancel_requested",
            job_id=job_id,
            tenant_id=tenant_id,
        )
        return build_progress_report(job)

    def get_status_summary(self, *, tenant_id: str) -> ScrapeStatusSummary:
        config = self._stores.configs.get_config(tenant_id)
        return ScrapeStatusSummary(
            configured=config is not None,
            config=config,
            active_job=self._stores.jobs.find_active_job(tenant_id),
            recent_jobs=self._stores.jobs.list_jobs(
                tenant_id=tenant_id,
                limit=self._settings.recent_jobs_limit,
            ),
            recent_logs=self._stores.audit.list_runs(
                tenant_id=tenant_id,
                limit=self._settings.recent_logs_limit,
            ),
        )

    def list_due_configs(self, *, limit: int = 50) -> list[OrgScrapeConfig]:
        return self._stores.configs.list_due_configs(now=utcnow(), limit=limit)


def build_substrate(settings: MarketIntelSettings, *, stores: MarketIntelStores) -> ExecutionSubstrate:
    if settings.use_cluster_jobs:
        return ClusterSubstrate(settings=settings.cluster)
    pipeline = build_pipeline(settings, stores=stores)
    return InProcessSubstrate(
        pipeline_factory=lambda: pipeline,
        job_store=stores.jobs,
        default_executor=ThreadPoolTaskExecutor(max_workers=settings.worker_threads),
    )


@lru_cache(maxsize=1)
def get_market_intel_scrape_service() -> MarketIntelScrapeService:
    from db.session import get_session_factory

    settings = get_market_intel_settings()
    stores = build_sqlalchemy_stores(get_session_factory())
    return MarketIntelScrapeService(
        settings=settings,
        stores=stores,
        substrate=build_substrate(settings, stores=stores),
    )
