"""
Execution of one scrape job across its platforms.

Platforms run one after another. A platform failure is confined to that
platform's progress; listing failures are confined to the listing. Anything
escaping the run loop fails the whole job.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.domain.market_intel import (
    ActionType,
    CurrentAction,
    PlatformRunResult,
    PlatformStatus,
    RunLogStatus,
    ScrapeJob,
    ScrapeJobStatus,
    ScrapeRequest,
)
from app.market_intel.errors import FetchFailedError, PersistenceUnavailableError, PlatformError
from app.market_intel.events import ProgressSink
from app.market_intel.job_state import ScrapeJobTracker
from app.market_intel.logging_utils import log_event, truncate_error
from app.market_intel.normalization import ListingNormalizer, canonical_source_id
from app.market_intel.platforms.base import FetchContext
from app.market_intel.platforms.registry import PlatformRegistry
from app.market_intel.reconciliation import ReconciliationEngine
from app.market_intel.storage.base import OrgConfigStore, RunAuditStore, ScrapeJobStore
from db.base import utcnow

logger = logging.getLogger(__name__)

DEGRADED_SUCCESS_PREFIX = "Some platforms failed to scrape"


@dataclass(frozen=True)
class JobOutcome:
    status: str
    error_message: str | None
    completed_platforms: tuple[str, ...]
    failed_platforms: tuple[str, ...]


def evaluate_outcome(
    *,
    platforms: tuple[str, ...],
    platform_statuses: dict[str, str],
    min_successful_platforms: int,
) -> JobOutcome:
    """
    COMPLETED when enough platforms completed, else FAILED.

    The threshold is capped at the number of platforms so a job asking for
    more successes than it has platforms can still succeed.
    """

    completed = tuple(p for p in platforms if platform_statuses.get(p) == PlatformStatus.COMPLETED)
    failed = tuple(p for p in platforms if p not in completed)
    required = max(1, min(min_successful_platforms, len(platforms)))

    if len(completed) >= required:
        error_message = f"{DEGRADED_SUCCESS_PREFIX}: {', '.join(failed)}" if failed else None
        return JobOutcome(ScrapeJobStatus.COMPLETED, error_message, completed, failed)

    if failed:
        error_message = f"All platforms failed to scrape: {', '.join(failed)}"
        if completed:
            error_message = (
                f"Only {len(completed)} of {required} required platforms succeeded; "
                f"failed: {', '.join(failed)}"
            )
    else:
        error_message = "No platforms to scrape"
    return JobOutcome(ScrapeJobStatus.FAILED, error_message, completed, failed)


class ScrapePipeline:
    def __init__(
        self,
        *,
        registry: PlatformRegistry,
        fetch_context_factory: Callable[[], FetchContext],
        normalizer: ListingNormalizer,
        reconciliation: ReconciliationEngine,
        job_store: ScrapeJobStore,
        audit_store: RunAuditStore,
        config_store: OrgConfigStore,
        sink: ProgressSink | None = None,
        flush_interval: int = 5,
        max_platform_errors: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._fetch_context_factory = fetch_context_factory
        self._normalizer = normalizer
        self._reconciliation = reconciliation
        self._job_store = job_store
        self._audit_store = audit_store
        self._config_store = config_store
        self._sink = sink
        self._flush_interval = flush_interval
        self._max_platform_errors = max_platform_errors
        self._clock = clock

    def run(self, job: ScrapeJob, request: ScrapeRequest) -> ScrapeJob:
        """
        Execute `job` to a terminal state and return its final stored value.
        """

        tracker = ScrapeJobTracker(
            job=job,
            store=self._job_store,
            sink=self._sink,
            flush_interval=self._flush_interval,
            max_errors=self._max_platform_errors,
            clock=self._clock,
        )
        try:
            self._run(tracker, request)
        except Exception as exc:
            message = truncate_error(exc)
            logger.exception("Scrape job %s failed", job.id)
            log_event(
                logger,
                logging.ERROR,
                "scrape_job_crashed",
                job_id=job.id,
                tenant_id=request.tenant_id,
                error=message,
            )
            tracker.finish(ScrapeJobStatus.FAILED, error_message=message)
            self._record_config_outcome(request.tenant_id, success=False, error=message)

        final = self._job_store.get_job(job.id)
        return final if final is not None else tracker.job

    def _run(self, tracker: ScrapeJobTracker, request: ScrapeRequest) -> None:
        job = tracker.job
        if not tracker.start():
            log_event(logger, logging.WARNING, "scrape_job_not_pending", job_id=job.id)
            return
        log_event(
            logger,
            logging.INFO,
            "scrape_job_started",
            job_id=job.id,
            tenant_id=request.tenant_id,
            platforms=list(request.platforms),
        )

        context = self._fetch_context_factory()
        try:
            for platform in request.platforms:
                if tracker.is_cancelled():
                    log_event(
                        logger,
                        logging.INFO,
                        "scrape_job_cancelled",
                        job_id=job.id,
                        tenant_id=request.tenant_id,
                        next_platform=platform,
                    )
                    return
                self._run_platform(tracker, request, platform, context)
        finally:
            context.session.close()

        if tracker.is_cancelled():
            return

        outcome = evaluate_outcome(
            platforms=request.platforms,
            platform_statuses={p: tracker.progress.get(p).status for p in request.platforms},
            min_successful_platforms=request.min_successful_platforms,
        )
        tracker.set_action(CurrentAction(type=ActionType.ANALYZING, message="Finalizing results"))
        tracker.finish(outcome.status, error_message=outcome.error_message)
        self._record_config_outcome(
            request.tenant_id,
            success=outcome.status == ScrapeJobStatus.COMPLETED,
            error=outcome.error_message,
        )

    def _run_platform(
        self,
        tracker: ScrapeJobTracker,
        request: ScrapeRequest,
        platform: str,
        context: FetchContext,
    ) -> None:
        job_id = tracker.job.id
        started = time.monotonic()
        audit = self._audit_store.start_run(
            tenant_id=request.tenant_id,
            platform=platform,
            job_id=job_id,
            started_at=self._clock(),
        )
        tracker.begin_platform(platform)

        found = new = updated = deactivated = failed = pages = 0
        errors: list[str] = []
        try:
            fetcher = self._registry.create_fetcher(platform, context=context)
            result = fetcher.fetch(request.filters, request.max_pages_per_platform)
        except Exception as exc:
            # Anything raised while talking to the source stays with this platform.
            if isinstance(exc, FetchFailedError):
                message = exc.reason
            elif isinstance(exc, PlatformError):
                message = str(exc)
            else:
                message = truncate_error(exc, limit=500)
            errors.append(message)
            tracker.fail_platform(platform, message)
            status = RunLogStatus.FAILED
            log_event(
                logger,
                logging.WARNING,
                "platform_failed",
                job_id=job_id,
                tenant_id=request.tenant_id,
                platform=platform,
                error=message,
            )
        else:
            pages = result.pages_fetched
            found = len(result.listings)
            errors.extend(result.errors)
            tracker.observe_listings(platform, found, pages=pages)
            tracker.add_errors(platform, result.errors)

            observed_at = self._clock()
            seen_ids: set[str] = set()
            for raw in result.listings:
                # Anything the platform returned counts as observed, even if storing it fails.
                source_id = canonical_source_id(raw.source_listing_id)
                if source_id:
                    seen_ids.add(source_id)
                try:
                    listing = self._normalizer.normalize(
                        raw,
                        platform_id=platform,
                        tenant_id=request.tenant_id,
                        observed_at=observed_at,
                    )
                    upsert = self._reconciliation.upsert_listing(listing)
                except PersistenceUnavailableError:
                    raise
                except Exception as exc:
                    failed += 1
                    message = f"Listing {raw.source_listing_id or '?'}: {exc}"
                    errors.append(message)
                    tracker.record_listing(platform, ok=False, title=raw.title, error=message)
                    log_event(
                        logger,
                        logging.WARNING,
                        "listing_failed",
                        job_id=job_id,
                        platform=platform,
                        source_listing_id=raw.source_listing_id,
                        error=str(exc),
                    )
                    continue

                if upsert.is_new:
                    new += 1
                else:
                    updated += 1
                tracker.record_listing(platform, ok=True, title=listing.title)

            if result.complete and result.pages_fetched > 0:
                deactivated = self._reconciliation.deactivate_stale(
                    tenant_id=request.tenant_id,
                    platform=platform,
                    seen_ids=seen_ids,
                    observed_at=observed_at,
                )
            elif not result.complete:
                note = "Fetch incomplete; stale listings were not deactivated"
                errors.append(note)
                tracker.add_errors(platform, (note,))

            tracker.complete_platform(platform)
            status = RunLogStatus.SUCCESS if failed == 0 and result.complete else RunLogStatus.PARTIAL

        duration_ms = int((time.monotonic() - started) * 1000)
        self._audit_store.finish_run(
            audit.id,
            result=PlatformRunResult(
                status=status,
                listings_found=found,
                listings_new=new,
                listings_updated=updated,
                listings_deactivated=deactivated,
                pages_scraped=pages,
                duration_ms=duration_ms,
                errors=tuple(dict.fromkeys(errors)),
            ),
            completed_at=self._clock(),
        )
        log_event(
            logger,
            logging.INFO,
            "platform_finished",
            job_id=job_id,
            platform=platform,
            status=status,
            found=found,
            new=new,
            updated=updated,
            deactivated=deactivated,
            failed=failed,
            duration_ms=duration_ms,
        )

    def _record_config_outcome(self, tenant_id: str, *, success: bool, error: str | None) -> None:
        try:
            self._config_store.record_run_outcome(
                tenant_id,
                success=success,
                finished_at=self._clock(),
                error=error,
            )
        except Exception:
            logger.exception("Failed to record scrape outcome for tenant %s", tenant_id)
