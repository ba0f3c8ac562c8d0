"""
In-flight progress tracking for one scrape job.

The tracker owns the job's progress value while the pipeline runs. Every
change is a ``ProgressDelta`` merged into a new ``JobProgress``; snapshots
are persisted every ``flush_interval`` listings and on each platform status
change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from app.domain.market_intel import (
    ActionType,
    CurrentAction,
    JobProgress,
    PlatformStatus,
    ProgressDelta,
    ScrapeJob,
    ScrapeJobStatus,
)
from app.market_intel.events import NullProgressSink, ProgressSink, build_progress_event
from app.market_intel.logging_utils import log_event
from app.market_intel.storage.base import ScrapeJobStore
from db.base import utcnow

logger = logging.getLogger(__name__)


def _combine(first: ProgressDelta | None, second: ProgressDelta) -> ProgressDelta:
    if first is None:
        return second
    errors = first.errors + tuple(error for error in second.errors if error not in first.errors)
    return ProgressDelta(
        total=first.total + second.total,
        passed=first.passed + second.passed,
        failed=first.failed + second.failed,
        errors=errors,
        status=second.status or first.status,
    )


class ScrapeJobTracker:
    def __init__(
        self,
        *,
        job: ScrapeJob,
        store: ScrapeJobStore,
        sink: ProgressSink | None = None,
        flush_interval: int = 5,
        max_errors: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.job = job
        self._store = store
        self._sink = sink or NullProgressSink()
        self._flush_interval = max(1, flush_interval)
        self._max_errors = max_errors
        self._clock = clock

        self._progress = job.progress if job.progress.platforms else JobProgress.initial(list(job.platforms))
        self._current_platform: str | None = job.current_platform
        self._current_action: CurrentAction | None = job.current_action
        self._since_flush = 0
        self._unpublished: dict[str, ProgressDelta] = {}
        self._detached = False

    @property
    def progress(self) -> JobProgress:
        return self._progress

    @property
    def current_platform(self) -> str | None:
        return self._current_platform

    @property
    def current_action(self) -> CurrentAction | None:
        return self._current_action

    @property
    def detached(self) -> bool:
        """True once the store refused a write because the job left RUNNING."""
        return self._detached

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> bool:
        started_at = self._clock()
        if not self._store.mark_running(self.job.id, started_at=started_at):
            self._detached = True
            return False
        self.job = self.job.with_updates(status=ScrapeJobStatus.RUNNING, started_at=started_at)
        self.set_action(CurrentAction(type=ActionType.INITIALIZING, message="Preparing scrape"))
        self.flush()
        return True

    def is_cancelled(self) -> bool:
        current = self._store.get_job(self.job.id)
        return current is None or current.status == ScrapeJobStatus.CANCELLED

    def finish(self, status: str, *, error_message: str | None = None) -> bool:
        self._current_action = None
        finished = self._store.finish_job(
            self.job.id,
            status=status,
            completed_at=self._clock(),
            error_message=error_message,
            progress=self._progress,
        )
        if finished:
            self.job = self.job.with_updates(status=status, error_message=error_message)
            self._publish_event(self._current_platform, None, status=status)
        log_event(
            logger,
            logging.INFO if finished else logging.WARNING,
            "scrape_job_finished" if finished else "scrape_job_finish_skipped",
            job_id=self.job.id,
            tenant_id=self.job.tenant_id,
            status=status,
            error_message=error_message,
        )
        return finished

    # -- platform progress ---------------------------------------------------

    def begin_platform(self, platform: str) -> None:
        self._current_platform = platform
        self._merge(platform, ProgressDelta(status=PlatformStatus.RUNNING))
        self.set_action(
            CurrentAction(
                type=ActionType.CONNECTING,
                message=f"Connecting to {platform}",
                platform=platform,
            )
        )
        self.flush()

    def observe_listings(self, platform: str, count: int, *, pages: int) -> None:
        self._merge(platform, ProgressDelta(total=count))
        self.set_action(
            CurrentAction(
                type=ActionType.EXTRACTING,
                message=f"Found {count} listings on {platform}",
                platform=platform,
                page=pages,
            )
        )
        self.flush()

    def record_listing(
        self,
        platform: str,
        *,
        ok: bool,
        title: str | None = None,
        error: str | None = None,
    ) -> None:
        delta = ProgressDelta(
            passed=1 if ok else 0,
            failed=0 if ok else 1,
            errors=(error,) if error else (),
        )
        self._merge(platform, delta)
        self._current_action = CurrentAction(
            type=ActionType.SAVING,
            message=f"Saving listings from {platform}",
            property_title=title,
            platform=platform,
        )
        self._since_flush += 1
        if self._since_flush >= self._flush_interval:
            self.flush()

    def add_errors(self, platform: str, errors: tuple[str, ...]) -> None:
        if errors:
            self._merge(platform, ProgressDelta(errors=errors))

    def complete_platform(self, platform: str) -> None:
        self._merge(platform, ProgressDelta(status=PlatformStatus.COMPLETED))
        self.flush()

    def fail_platform(self, platform: str, error: str) -> None:
        self._merge(platform, ProgressDelta(status=PlatformStatus.FAILED, errors=(error,)))
        self.flush()

    def set_action(self, action: CurrentAction) -> None:
        self._current_action = action

    # -- persistence -----------------------------------------------------------

    def flush(self) -> bool:
        self._since_flush = 0
        saved = self._store.save_progress(
            self.job.id,
            progress=self._progress,
            current_platform=self._current_platform,
            current_action=self._current_action,
        )
        if not saved and not self._detached:
            self._detached = True
            log_event(
                logger,
                logging.WARNING,
                "scrape_progress_rejected",
                job_id=self.job.id,
                tenant_id=self.job.tenant_id,
            )

        pending, self._unpublished = self._unpublished, {}
        for platform, delta in pending.items():
            self._publish_event(platform, delta, status=self._progress.get(platform).status)
        return saved

    def _merge(self, platform: str, delta: ProgressDelta) -> None:
        self._progress = self._progress.merge(platform, delta, max_errors=self._max_errors)
        self._unpublished[platform] = _combine(self._unpublished.get(platform), delta)

    def _publish_event(self, platform: str | None, delta: ProgressDelta | None, *, status: str) -> None:
        self._sink.publish(
            self.job.tenant_id,
            build_progress_event(
                job_id=self.job.id,
                platform=platform,
                status=status,
                delta=delta,
                current_action=self._current_action,
            ),
        )
