"""
SQLAlchemy-backed stores for market-intelligence scraping.

Each operation runs in its own short session so the pipeline thread never
shares a session with request handlers.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.market_intel import (
    CanonicalListing,
    CurrentAction,
    JobProgress,
    OrgScrapeConfig,
    PlatformRunResult,
    ScrapeJob,
    ScrapeJobStatus,
    ScrapeRunLogEntry,
    StoredListingState,
    UpsertResult,
)
from app.market_intel.errors import (
    ActiveScrapeJobError,
    JobNotCancellableError,
    PersistenceUnavailableError,
    ScrapeJobNotFoundError,
)
from app.market_intel.reconciliation import classify_observation, price_change_type
from app.market_intel.storage.base import (
    ListingStore,
    OrgConfigStore,
    RunAuditStore,
    ScrapeJobStore,
)
from db.base import utcnow
from db.models.org_scrape_config import OrgScrapeConfigRecord
from db.models.scrape_job import ACTIVE_JOB_INDEX, ScrapeJobRecord
from db.models.scrape_run_log import ScrapeRunLog
from db.repositories.competitor_listing_repository import CompetitorListingRepository
from db.repositories.org_scrape_config_repository import OrgScrapeConfigRepository
from db.repositories.scrape_job_repository import ScrapeJobRepository
from db.repositories.scrape_run_log_repository import ScrapeRunLogRepository

SessionFactory = Callable[[], Session]

CANCELLED_MESSAGE = "Cancelled by user"


class _SessionScoped:
    def __init__(self, *, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, InterfaceError) as exc:
            session.rollback()
            raise PersistenceUnavailableError(str(exc.orig or exc)) from exc
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------


def job_from_record(record: ScrapeJobRecord) -> ScrapeJob:
    return ScrapeJob(
        id=record.id,
        tenant_id=record.tenant_id,
        status=record.status,
        platforms=tuple(record.platforms or ()),
        progress=JobProgress.from_dict(record.progress),
        current_platform=record.current_platform,
        current_action=CurrentAction.from_dict(record.current_action),
        started_at=record.started_at,
        completed_at=record.completed_at,
        error_message=record.error_message,
        created_at=record.created_at,
        substrate=record.substrate,
        external_job_name=record.external_job_name,
    )


def run_log_from_record(record: ScrapeRunLog) -> ScrapeRunLogEntry:
    return ScrapeRunLogEntry(
        id=record.id,
        tenant_id=record.tenant_id,
        platform=record.platform,
        status=record.status,
        started_at=record.started_at,
        job_id=record.job_id,
        completed_at=record.completed_at,
        listings_found=record.listings_found,
        listings_new=record.listings_new,
        listings_updated=record.listings_updated,
        listings_deactivated=record.listings_deactivated,
        pages_scraped=record.pages_scraped,
        duration_ms=record.duration_ms,
        errors=tuple(record.errors or ()),
    )


def config_from_record(record: OrgScrapeConfigRecord) -> OrgScrapeConfig:
    return OrgScrapeConfig(
        tenant_id=record.tenant_id,
        is_enabled=record.is_enabled,
        platforms=tuple(record.platforms or ()),
        target_areas=tuple(record.target_areas or ()),
        target_municipalities=tuple(record.target_municipalities or ()),
        transaction_types=tuple(record.transaction_types or ()) or ("sale",),
        property_types=tuple(record.property_types or ()),
        min_price=record.min_price,
        max_price=record.max_price,
        max_pages_per_platform=record.max_pages_per_platform,
        min_successful_platforms=record.min_successful_platforms,
        status=record.status,
        scrape_frequency=record.scrape_frequency,
        consecutive_failures=record.consecutive_failures,
        last_scrape_at=record.last_scrape_at,
        next_scrape_at=record.next_scrape_at,
        last_error=record.last_error,
    )


def _listing_values(listing: CanonicalListing) -> dict[str, Any]:
    values = asdict(listing)
    values["images"] = list(listing.images)
    return values


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class SQLAlchemyListingStore(_SessionScoped, ListingStore):
    def upsert_listing(self, listing: CanonicalListing) -> UpsertResult:
        values = _listing_values(listing)
        with self._transaction() as session:
            repository = CompetitorListingRepository(session)
            existing = repository.get_for_update(
                tenant_id=listing.tenant_id,
                source_platform=listing.source_platform,
                source_listing_id=listing.source_listing_id,
            )
            if existing is None:
                inserted_id = repository.insert_if_absent(
                    {**values, "first_seen_at": listing.last_seen_at, "is_active": True}
                )
                if inserted_id is not None:
                    change_type = price_change_type(None, listing.price)
                    if change_type is not None:
                        repository.add_price_history(
                            tenant_id=listing.tenant_id,
                            listing_id=inserted_id,
                            price=listing.price,
                            price_per_sqm=listing.price_per_sqm,
                            change_type=change_type,
                            recorded_at=listing.last_seen_at,
                        )
                    return classify_observation(None, listing)

                # Another writer inserted the identity first; fall through to a locked update.
                existing = repository.get_for_update(
                    tenant_id=listing.tenant_id,
                    source_platform=listing.source_platform,
                    source_listing_id=listing.source_listing_id,
                )
                if existing is None:
                    raise SQLAlchemyError(
                        f"Listing {listing.identity} vanished during concurrent insert."
                    )

            stored = StoredListingState(
                listing_id=existing.id,
                price=existing.price,
                is_active=existing.is_active,
            )
            result = classify_observation(stored, listing)

            # Keep the last known price when the platform stops showing one.
            if listing.price is None:
                values.pop("price")
                values.pop("price_per_sqm")
            repository.apply_observation(existing, values)

            if result.price_changed:
                change_type = price_change_type(stored.price, listing.price)
                if change_type is not None:
                    repository.add_price_history(
                        tenant_id=listing.tenant_id,
                        listing_id=existing.id,
                        price=listing.price,
                        price_per_sqm=listing.price_per_sqm,
                        change_type=change_type,
                        recorded_at=listing.last_seen_at,
                    )
            return result

    def deactivate_missing(
        self,
        *,
        tenant_id: str,
        platform: str,
        seen_ids: Collection[str],
        observed_at: datetime,
    ) -> int:
        with self._transaction() as session:
            return CompetitorListingRepository(session).deactivate_missing(
                tenant_id=tenant_id,
                source_platform=platform,
                seen_ids=seen_ids,
                updated_at=observed_at,
            )


class SQLAlchemyScrapeJobStore(_SessionScoped, ScrapeJobStore):
    def create_job(
        self,
        *,
        tenant_id: str,
        platforms: tuple[str, ...],
        substrate: str,
    ) -> ScrapeJob:
        try:
            with self._transaction() as session:
                repository = ScrapeJobRepository(session)
                active = repository.find_active_job(tenant_id)
                if active is not None:
                    raise ActiveScrapeJobError(active.id)
                record = repository.create_job(
                    tenant_id=tenant_id,
                    platforms=list(platforms),
                    progress=JobProgress.initial(list(platforms)).to_dict(),
                    substrate=substrate,
                )
                return job_from_record(record)
        except IntegrityError as exc:
            if ACTIVE_JOB_INDEX not in str(exc.orig):
                raise
            # Lost the race against a concurrent submission.
            winner = self.find_active_job(tenant_id)
            raise ActiveScrapeJobError(winner.id if winner else None) from exc

    def get_job(self, job_id: uuid.UUID) -> ScrapeJob | None:
        with self._transaction() as session:
            record = ScrapeJobRepository(session).get_job(job_id)
            return job_from_record(record) if record is not None else None

    def find_active_job(self, tenant_id: str) -> ScrapeJob | None:
        with self._transaction() as session:
            record = ScrapeJobRepository(session).find_active_job(tenant_id)
            return job_from_record(record) if record is not None else None

    def list_jobs(self, *, tenant_id: str, limit: int) -> list[ScrapeJob]:
        with self._transaction() as session:
            records = ScrapeJobRepository(session).list_jobs(tenant_id=tenant_id, limit=limit)
            return [job_from_record(record) for record in records]

    def mark_running(self, job_id: uuid.UUID, *, started_at: datetime) -> bool:
        with self._transaction() as session:
            return ScrapeJobRepository(session).update_if_status(
                job_id=job_id,
                allowed_statuses=(ScrapeJobStatus.PENDING,),
                values={
                    "status": ScrapeJobStatus.RUNNING,
                    "started_at": started_at,
                    "updated_at": utcnow(),
                },
            )

    def save_progress(
        self,
        job_id: uuid.UUID,
        *,
        progress: JobProgress,
        current_platform: str | None,
        current_action: CurrentAction | None,
    ) -> bool:
        with self._transaction() as session:
            return ScrapeJobRepository(session).update_if_status(
                job_id=job_id,
                allowed_statuses=(ScrapeJobStatus.RUNNING,),
                values={
                    "progress": progress.to_dict(),
                    "current_platform": current_platform,
                    "current_action": current_action.to_dict() if current_action else None,
                    "updated_at": utcnow(),
                },
            )

    def finish_job(
        self,
        job_id: uuid.UUID,
        *,
        status: str,
        completed_at: datetime,
        error_message: str | None = None,
        progress: JobProgress | None = None,
    ) -> bool:
        if status not in ScrapeJobStatus.TERMINAL:
            raise ValueError(f"Not a terminal status: {status}")
        values: dict[str, Any] = {
            "status": status,
            "completed_at": completed_at,
            "error_message": error_message,
            "current_action": None,
            "updated_at": utcnow(),
        }
        if progress is not None:
            values["progress"] = progress.to_dict()
        with self._transaction() as session:
            return ScrapeJobRepository(session).update_if_status(
                job_id=job_id,
                allowed_statuses=ScrapeJobStatus.ACTIVE,
                values=values,
            )

    def cancel_job(
        self,
        job_id: uuid.UUID,
        *,
        tenant_id: str,
        cancelled_at: datetime,
    ) -> ScrapeJob:
        with self._transaction() as session:
            repository = ScrapeJobRepository(session)
            record = repository.get_job_for_update(job_id)
            if record is None or record.tenant_id != tenant_id:
                raise ScrapeJobNotFoundError(job_id)
            if record.status not in ScrapeJobStatus.ACTIVE:
                raise JobNotCancellableError(job_id, record.status)
            record.status = ScrapeJobStatus.CANCELLED
            record.error_message = CANCELLED_MESSAGE
            record.completed_at = cancelled_at
            record.current_action = None
            session.flush()
            return job_from_record(record)

    def set_external_reference(self, job_id: uuid.UUID, *, external_job_name: str) -> None:
        with self._transaction() as session:
            record = ScrapeJobRepository(session).get_job(job_id)
            if record is None:
                raise ScrapeJobNotFoundError(job_id)
            record.external_job_name = external_job_name


class SQLAlchemyRunAuditStore(_SessionScoped, RunAuditStore):
    def start_run(
        self,
        *,
        tenant_id: str,
        platform: str,
        job_id: uuid.UUID | None,
        started_at: datetime,
    ) -> ScrapeRunLogEntry:
        with self._transaction() as session:
            record = ScrapeRunLogRepository(session).create(
                tenant_id=tenant_id,
                platform=platform,
                job_id=job_id,
                started_at=started_at,
            )
            return run_log_from_record(record)

    def finish_run(
        self,
        entry_id: uuid.UUID,
        *,
        result: PlatformRunResult,
        completed_at: datetime,
    ) -> None:
        with self._transaction() as session:
            ScrapeRunLogRepository(session).finish(
                entry_id=entry_id,
                values={
                    "status": result.status,
                    "completed_at": completed_at,
                    "listings_found": result.listings_found,
                    "listings_new": result.listings_new,
                    "listings_updated": result.listings_updated,
                    "listings_deactivated": result.listings_deactivated,
                    "pages_scraped": result.pages_scraped,
                    "duration_ms": result.duration_ms,
                    "errors": list(result.errors),
                },
            )

    def list_runs(self, *, tenant_id: str, limit: int) -> list[ScrapeRunLogEntry]:
        with self._transaction() as session:
            records = ScrapeRunLogRepository(session).list_recent(tenant_id=tenant_id, limit=limit)
            return [run_log_from_record(record) for record in records]


class SQLAlchemyOrgConfigStore(_SessionScoped, OrgConfigStore):
    def get_config(self, tenant_id: str) -> OrgScrapeConfig | None:
        with self._transaction() as session:
            record = OrgScrapeConfigRepository(session).get(tenant_id)
            return config_from_record(record) if record is not None else None

    def record_run_outcome(
        self,
        tenant_id: str,
        *,
        success: bool,
        finished_at: datetime,
        error: str | None = None,
    ) -> None:
        with self._transaction() as session:
            record = OrgScrapeConfigRepository(session).get_for_update(tenant_id)
            if record is None:
                return
            updated = config_from_record(record).with_run_outcome(
                success=success,
                finished_at=finished_at,
                error=error,
            )
            record.status = updated.status
            record.consecutive_failures = updated.consecutive_failures
            record.last_scrape_at = updated.last_scrape_at
            record.next_scrape_at = updated.next_scrape_at
            record.last_error = updated.last_error

    def list_due_configs(self, *, now: datetime, limit: int) -> list[OrgScrapeConfig]:
        with self._transaction() as session:
            records = OrgScrapeConfigRepository(session).list_due(now=now, limit=limit)
            return [config_from_record(record) for record in records]
