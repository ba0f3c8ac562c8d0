"""
Storage layer interfaces for scrape jobs, listings, run audit and tenant config.

Implementations must make every job write conditional on the current status so
terminal rows are never overwritten.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime

from app.domain.market_intel import (
    CanonicalListing,
    CurrentAction,
    JobProgress,
    OrgScrapeConfig,
    PlatformRunResult,
    ScrapeJob,
    ScrapeRunLogEntry,
    UpsertResult,
)


class ListingStore(ABC):
    """
    Durable store for canonical listings keyed by (tenant, platform, source id).
    """

    @abstractmethod
    def upsert_listing(self, listing: CanonicalListing) -> UpsertResult:
        """
        Atomically insert or refresh one listing and record price history.
        """

    @abstractmethod
    def deactivate_missing(
        self,
        *,
        tenant_id: str,
        platform: str,
        seen_ids: Collection[str],
        observed_at: datetime,
    ) -> int:
        """
        Flag active listings of the tenant/platform not in `seen_ids` inactive.
        """


class ScrapeJobStore(ABC):
    @abstractmethod
    def create_job(
        self,
        *,
        tenant_id: str,
        platforms: tuple[str, ...],
        substrate: str,
    ) -> ScrapeJob:
        """
        Create a PENDING job or raise ActiveScrapeJobError carrying the winner's id.
        """

    @abstractmethod
    def get_job(self, job_id: uuid.UUID) -> ScrapeJob | None: ...

    @abstractmethod
    def find_active_job(self, tenant_id: str) -> ScrapeJob | None: ...

    @abstractmethod
    def list_jobs(self, *, tenant_id: str, limit: int) -> list[ScrapeJob]: ...

    @abstractmethod
    def mark_running(self, job_id: uuid.UUID, *, started_at: datetime) -> bool:
        """
        PENDING -> RUNNING. Returns False if the job is no longer pending.
        """

    @abstractmethod
    def save_progress(
        self,
        job_id: uuid.UUID,
        *,
        progress: JobProgress,
        current_platform: str | None,
        current_action: CurrentAction | None,
    ) -> bool:
        """
        Persist a progress snapshot while the job is RUNNING.
        """

    @abstractmethod
    def finish_job(
        self,
        job_id: uuid.UUID,
        *,
        status: str,
        completed_at: datetime,
        error_message: str | None = None,
        progress: JobProgress | None = None,
    ) -> bool:
        """
        Move an active job to a terminal status. Returns False if it was already terminal.
        """

    @abstractmethod
    def cancel_job(
        self,
        job_id: uuid.UUID,
        *,
        tenant_id: str,
        cancelled_at: datetime,
    ) -> ScrapeJob:
        """
        Cancel an active job owned by `tenant_id`.

        Raises ScrapeJobNotFoundError or JobNotCancellableError.
        """

    @abstractmethod
    def set_external_reference(self, job_id: uuid.UUID, *, external_job_name: str) -> None: ...


class RunAuditStore(ABC):
    @abstractmethod
    def start_run(
        self,
        *,
        tenant_id: str,
        platform: str,
        job_id: uuid.UUID | None,
        started_at: datetime,
    ) -> ScrapeRunLogEntry: ...

    @abstractmethod
    def finish_run(
        self,
        entry_id: uuid.UUID,
        *,
        result: PlatformRunResult,
        completed_at: datetime,
    ) -> None: ...

    @abstractmethod
    def list_runs(self, *, tenant_id: str, limit: int) -> list[ScrapeRunLogEntry]: ...


class OrgConfigStore(ABC):
    @abstractmethod
    def get_config(self, tenant_id: str) -> OrgScrapeConfig | None: ...

    @abstractmethod
    def record_run_outcome(
        self,
        tenant_id: str,
        *,
        success: bool,
        finished_at: datetime,
        error: str | None = None,
    ) -> None:
        """
        Update run status, failure counter and next run time after a scrape.
        """

    @abstractmethod
    def list_due_configs(self, *, now: datetime, limit: int) -> list[OrgScrapeConfig]: ...
