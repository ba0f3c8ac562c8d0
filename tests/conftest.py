"""
tests/conftest.py

Shared in-memory fakes for market-intelligence tests.

Nothing here touches a database or the network: stores keep state in
dicts, fetchers return scripted results and HTTP sessions serve canned
responses.
"""

from __future__ import annotations

import itertools
import threading
import uuid
from collections.abc import Callable, Collection
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import requests

from app.config import ClusterSettings, FetchSettings, MarketIntelSettings
from app.domain.market_intel import (
    CanonicalListing,
    CurrentAction,
    JobProgress,
    OrgConfigStatus,
    OrgScrapeConfig,
    PlatformRunResult,
    RawListing,
    RunLogStatus,
    ScrapeFilters,
    ScrapeJob,
    ScrapeJobStatus,
    ScrapeRunLogEntry,
    StoredListingState,
    UpsertResult,
)
from app.market_intel.errors import (
    ActiveScrapeJobError,
    JobNotCancellableError,
    ScrapeJobNotFoundError,
)
from app.market_intel.normalization import ListingNormalizer
from app.market_intel.pipeline import ScrapePipeline
from app.market_intel.platforms.base import FetchContext, FetchResult, PlatformFetcher, PlatformSpec
from app.market_intel.platforms.registry import PlatformRegistry
from app.market_intel.rate_limiter import DomainRateLimiter
from app.market_intel.reconciliation import (
    ReconciliationEngine,
    classify_observation,
    price_change_type,
)
from app.market_intel.robots import RobotsPolicyManager
from app.market_intel.runtime import MarketIntelStores
from app.market_intel.storage.base import (
    ListingStore,
    OrgConfigStore,
    RunAuditStore,
    ScrapeJobStore,
)

TENANT = "org-1"
OBSERVED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Returns a strictly increasing time, one second per call."""

    def __init__(self, start: datetime = OBSERVED_AT) -> None:
        self._now = start

    def __call__(self) -> datetime:
        self._now = self._now + timedelta(seconds=1)
        return self._now


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@dataclass
class StoredListing:
    id: uuid.UUID
    listing: CanonicalListing
    is_active: bool
    first_seen_at: datetime


class InMemoryListingStore(ListingStore):
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str, str], StoredListing] = {}
        self.price_history: list[tuple[str, int, str]] = []
        self._lock = threading.Lock()

    def seed(self, listing: CanonicalListing, *, is_active: bool = True) -> None:
        self.rows[listing.identity] = StoredListing(
            id=uuid.uuid4(),
            listing=listing,
            is_active=is_active,
            first_seen_at=listing.last_seen_at,
        )

    def get(self, platform: str, source_listing_id: str, tenant_id: str = TENANT) -> StoredListing | None:
        return self.rows.get((tenant_id, platform, source_listing_id))

    def upsert_listing(self, listing: CanonicalListing) -> UpsertResult:
        with self._lock:
            row = self.rows.get(listing.identity)
            stored = None
            if row is not None:
                stored = StoredListingState(
                    listing_id=row.id,
                    price=row.listing.price,
                    is_active=row.is_active,
                )
            result = classify_observation(stored, listing)

            previous_price = row.listing.price if row is not None else None
            if row is None:
                row = StoredListing(
                    id=uuid.uuid4(),
                    listing=listing,
                    is_active=True,
                    first_seen_at=listing.last_seen_at,
                )
                self.rows[listing.identity] = row
            else:
                kept_price = listing.price if listing.price is not None else previous_price
                row.listing = replace(listing, price=kept_price)
                row.is_active = True

            if result.is_new or result.price_changed:
                change = price_change_type(previous_price, listing.price)
                if change is not None and listing.price is not None:
                    self.price_history.append((listing.source_listing_id, listing.price, change))
            return result

    def deactivate_missing(
        self,
        *,
        tenant_id: str,
        platform: str,
        seen_ids: Collection[str],
        observed_at: datetime,
    ) -> int:
        count = 0
        with self._lock:
            for (row_tenant, row_platform, source_id), row in self.rows.items():
                if row_tenant != tenant_id or row_platform != platform:
                    continue
                if row.is_active and source_id not in seen_ids:
                    row.is_active = False
                    count += 1
        return count


class InMemoryScrapeJobStore(ScrapeJobStore):
    def __init__(self) -> None:
        self.jobs: dict[uuid.UUID, ScrapeJob] = {}
        self.progress_writes = 0
        self._order = itertools.count()
        self._created: dict[uuid.UUID, int] = {}
        self._lock = threading.Lock()

    def create_job(
        self,
        *,
        tenant_id: str,
        platforms: tuple[str, ...],
        substrate: str,
    ) -> ScrapeJob:
        with self._lock:
            active = self._active_for(tenant_id)
            if active is not None:
                raise ActiveScrapeJobError(active.id)
            job = ScrapeJob(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                status=ScrapeJobStatus.PENDING,
                platforms=tuple(platforms),
                progress=JobProgress.initial(list(platforms)),
                created_at=OBSERVED_AT,
                substrate=substrate,
            )
            self.jobs[job.id] = job
            self._created[job.id] = next(self._order)
            return job

    def get_job(self, job_id: uuid.UUID) -> ScrapeJob | None:
        return self.jobs.get(job_id)

    def find_active_job(self, tenant_id: str) -> ScrapeJob | None:
        with self._lock:
            return self._active_for(tenant_id)

    def list_jobs(self, *, tenant_id: str, limit: int) -> list[ScrapeJob]:
        owned = [job for job in self.jobs.values() if job.tenant_id == tenant_id]
        owned.sort(key=lambda job: self._created[job.id], reverse=True)
        return owned[:limit]

    def mark_running(self, job_id: uuid.UUID, *, started_at: datetime) -> bool:
        return self._update_if(
            job_id,
            (ScrapeJobStatus.PENDING,),
            status=ScrapeJobStatus.RUNNING,
            started_at=started_at,
        )

    def save_progress(
        self,
        job_id: uuid.UUID,
        *,
        progress: JobProgress,
        current_platform: str | None,
        current_action: CurrentAction | None,
    ) -> bool:
        saved = self._update_if(
            job_id,
            (ScrapeJobStatus.RUNNING,),
            progress=progress,
            current_platform=current_platform,
            current_action=current_action,
        )
        if saved:
            self.progress_writes += 1
        return saved

    def finish_job(
        self,
        job_id: uuid.UUID,
        *,
        status: str,
        completed_at: datetime,
        error_message: str | None = None,
        progress: JobProgress | None = None,
    ) -> bool:
        changes: dict[str, Any] = {
            "status": status,
            "completed_at": completed_at,
            "error_message": error_message,
            "current_action": None,
        }
        if progress is not None:
            changes["progress"] = progress
        return self._update_if(job_id, ScrapeJobStatus.ACTIVE, **changes)

    def cancel_job(self, job_id: uuid.UUID, *, tenant_id: str, cancelled_at: datetime) -> ScrapeJob:
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.tenant_id != tenant_id:
                raise ScrapeJobNotFoundError(job_id)
            if job.status not in ScrapeJobStatus.ACTIVE:
                raise JobNotCancellableError(job_id, job.status)
            cancelled = job.with_updates(
                status=ScrapeJobStatus.CANCELLED,
                error_message="Cancelled by user",
                completed_at=cancelled_at,
                current_action=None,
            )
            self.jobs[job_id] = cancelled
            return cancelled

    def set_external_reference(self, job_id: uuid.UUID, *, external_job_name: str) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise ScrapeJobNotFoundError(job_id)
        self.jobs[job_id] = job.with_updates(external_job_name=external_job_name)

    def _active_for(self, tenant_id: str) -> ScrapeJob | None:
        for job in self.jobs.values():
            if job.tenant_id == tenant_id and job.is_active:
                return job
        return None

    def _update_if(self, job_id: uuid.UUID, allowed: tuple[str, ...], **changes: Any) -> bool:
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.status not in allowed:
                return False
            self.jobs[job_id] = job.with_updates(**changes)
            return True


class InMemoryRunAuditStore(RunAuditStore):
    def __init__(self) -> None:
        self.entries: dict[uuid.UUID, ScrapeRunLogEntry] = {}

    def start_run(
        self,
        *,
        tenant_id: str,
        platform: str,
        job_id: uuid.UUID | None,
        started_at: datetime,
    ) -> ScrapeRunLogEntry:
        entry = ScrapeRunLogEntry(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            platform=platform,
            status=RunLogStatus.RUNNING,
            started_at=started_at,
            job_id=job_id,
        )
        self.entries[entry.id] = entry
        return entry

    def finish_run(self, entry_id: uuid.UUID, *, result: PlatformRunResult, completed_at: datetime) -> None:
        self.entries[entry_id] = replace(
            self.entries[entry_id],
            status=result.status,
            completed_at=completed_at,
            listings_found=result.listings_found,
            listings_new=result.listings_new,
            listings_updated=result.listings_updated,
            listings_deactivated=result.listings_deactivated,
            pages_scraped=result.pages_scraped,
            duration_ms=result.duration_ms,
            errors=result.errors,
        )

    def list_runs(self, *, tenant_id: str, limit: int) -> list[ScrapeRunLogEntry]:
        owned = [entry for entry in self.entries.values() if entry.tenant_id == tenant_id]
        owned.sort(key=lambda entry: entry.started_at, reverse=True)
        return owned[:limit]

    def for_platform(self, platform: str) -> list[ScrapeRunLogEntry]:
        return [entry for entry in self.entries.values() if entry.platform == platform]


class InMemoryOrgConfigStore(OrgConfigStore):
    def __init__(self, configs: list[OrgScrapeConfig] | None = None) -> None:
        self.configs: dict[str, OrgScrapeConfig] = {config.tenant_id: config for config in configs or []}

    def get_config(self, tenant_id: str) -> OrgScrapeConfig | None:
        return self.configs.get(tenant_id)

    def record_run_outcome(
        self,
        tenant_id: str,
        *,
        success: bool,
        finished_at: datetime,
        error: str | None = None,
    ) -> None:
        config = self.configs.get(tenant_id)
        if config is None:
            return
        self.configs[tenant_id] = config.with_run_outcome(
            success=success,
            finished_at=finished_at,
            error=error,
        )

    def list_due_configs(self, *, now: datetime, limit: int) -> list[OrgScrapeConfig]:
        due = [
            config
            for config in self.configs.values()
            if config.is_enabled
            and config.status == OrgConfigStatus.ACTIVE
            and (config.next_scrape_at is None or config.next_scrape_at <= now)
        ]
        return due[:limit]


# ---------------------------------------------------------------------------
# Sinks, fetchers and HTTP
# ---------------------------------------------------------------------------


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, tenant_id: str, event: dict[str, Any]) -> None:
        self.events.append((tenant_id, event))


FetchOutcome = FetchResult | Exception | Callable[[ScrapeFilters, int], FetchResult]


class ScriptedFetcher:
    def __init__(self, outcome: FetchOutcome) -> None:
        self._outcome = outcome
        self.calls: list[tuple[ScrapeFilters, int]] = []

    def fetch(self, filters: ScrapeFilters, page_cap: int) -> FetchResult:
        self.calls.append((filters, page_cap))
        if isinstance(self._outcome, Exception):
            raise self._outcome
        if callable(self._outcome):
            return self._outcome(filters, page_cap)
        return self._outcome


class ScriptedRegistry(PlatformRegistry):
    """
    Registry whose platforms return canned fetch outcomes.

    Built-in platforms stay known, so unscripted ids behave as in production.
    """

    def __init__(self, outcomes: dict[str, FetchOutcome] | None = None) -> None:
        super().__init__()
        self.outcomes = dict(outcomes or {})
        self.fetchers: dict[str, ScriptedFetcher] = {}
        for platform_id in self.outcomes:
            if not self.is_known(platform_id):
                spec = PlatformSpec(
                    id=platform_id,
                    name=platform_id.upper(),
                    base_url=f"https://{platform_id}.example",
                    search_path="/search",
                )
                self.register(spec=spec, fetcher_class=PlatformFetcher)

    def create_fetcher(self, platform_id: str, *, context: FetchContext) -> ScriptedFetcher:  # type: ignore[override]
        self.get_spec(platform_id)
        fetcher = ScriptedFetcher(self.outcomes[platform_id])
        self.fetchers[platform_id] = fetcher
        return fetcher


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "") -> None:
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status={self.status_code}", response=self)  # type: ignore[arg-type]


class FakeHTTPSession:
    """
    Serves canned responses keyed by URL. Values may be a FakeResponse, an
    exception to raise, or a list consumed one item per request.
    """

    def __init__(self, routes: dict[str, Any] | None = None, default: FakeResponse | None = None) -> None:
        self.routes = dict(routes or {})
        self.default = default or FakeResponse(404, "")
        self.requested: list[str] = []
        self.posted: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requested.append(url)
        return self._resolve(url)

    def post(self, url: str, json: dict[str, Any] | None = None, **kwargs: Any) -> FakeResponse:
        self.posted.append((url, json or {}))
        return self._resolve(url)

    def close(self) -> None:
        self.closed = True

    def _resolve(self, url: str) -> FakeResponse:
        outcome = self.routes.get(url, self.default)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def build_fetch_context(session: FakeHTTPSession | None = None, **settings: Any) -> FetchContext:
    http = session or FakeHTTPSession()
    fetch_settings = FetchSettings(
        max_retries=settings.pop("max_retries", 0),
        backoff_initial_seconds=0.0,
        respect_robots=settings.pop("respect_robots", False),
        **settings,
    )
    return FetchContext(
        session=http,  # type: ignore[arg-type]
        settings=fetch_settings,
        robots_policy=RobotsPolicyManager(
            session=http,  # type: ignore[arg-type]
            enabled=fetch_settings.respect_robots,
            allow_when_unreachable=fetch_settings.allow_when_robots_unreachable,
        ),
        rate_limiter=DomainRateLimiter(
            default_rate_limit_per_second=100.0,
            sleep=lambda seconds: None,
        ),
    )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_raw_listing(source_id: str, *, price: int | None = 100_000, **fields: Any) -> RawListing:
    return RawListing(
        source_listing_id=source_id,
        source_url=f"https://example.test/listing/{source_id}",
        title=fields.pop("title", f"Apartment {source_id}"),
        price=price,
        size_sqm=fields.pop("size_sqm", 80),
        area=fields.pop("area", "Kolonaki"),
        **fields,
    )


def make_canonical_listing(
    source_id: str,
    *,
    platform: str = "a",
    price: int | None = 100_000,
    tenant_id: str = TENANT,
    observed_at: datetime = OBSERVED_AT,
) -> CanonicalListing:
    return CanonicalListing(
        tenant_id=tenant_id,
        source_platform=platform,
        source_listing_id=source_id,
        source_url=f"https://example.test/listing/{source_id}",
        last_seen_at=observed_at,
        title=f"Apartment {source_id}",
        price=price,
    )


def make_config(**overrides: Any) -> OrgScrapeConfig:
    values: dict[str, Any] = {
        "tenant_id": TENANT,
        "is_enabled": True,
        "platforms": ("a", "b"),
        "target_areas": ("Kolonaki",),
        "status": OrgConfigStatus.ACTIVE,
        "max_pages_per_platform": 3,
    }
    values.update(overrides)
    return OrgScrapeConfig(**values)


def make_settings(**overrides: Any) -> MarketIntelSettings:
    values: dict[str, Any] = {
        "fetch": FetchSettings(max_retries=0, backoff_initial_seconds=0.0, respect_robots=False),
        "cluster": ClusterSettings(service_account_token="test-token", verify_tls=False),
        "progress_flush_interval": 5,
    }
    values.update(overrides)
    return MarketIntelSettings(**values)


def fetch_result(*listings: RawListing, complete: bool = True, errors: tuple[str, ...] = ()) -> FetchResult:
    return FetchResult(listings=tuple(listings), pages_fetched=1, complete=complete, errors=errors)


@dataclass
class PipelineHarness:
    stores: MarketIntelStores
    registry: ScriptedRegistry
    sink: RecordingSink
    pipeline: ScrapePipeline
    contexts: list[FetchContext]

    @property
    def jobs(self) -> InMemoryScrapeJobStore:
        return self.stores.jobs  # type: ignore[return-value]

    @property
    def listings(self) -> InMemoryListingStore:
        return self.stores.listings  # type: ignore[return-value]

    @property
    def audit(self) -> InMemoryRunAuditStore:
        return self.stores.audit  # type: ignore[return-value]

    @property
    def configs(self) -> InMemoryOrgConfigStore:
        return self.stores.configs  # type: ignore[return-value]


def build_harness(
    outcomes: dict[str, FetchOutcome],
    *,
    configs: list[OrgScrapeConfig] | None = None,
    flush_interval: int = 5,
    job_store: InMemoryScrapeJobStore | None = None,
) -> PipelineHarness:
    stores = MarketIntelStores(
        jobs=job_store or InMemoryScrapeJobStore(),
        listings=InMemoryListingStore(),
        audit=InMemoryRunAuditStore(),
        configs=InMemoryOrgConfigStore(configs if configs is not None else [make_config()]),
    )
    registry = ScriptedRegistry(outcomes)
    sink = RecordingSink()
    contexts: list[FetchContext] = []

    def context_factory() -> FetchContext:
        context = build_fetch_context()
        contexts.append(context)
        return context

    pipeline = ScrapePipeline(
        registry=registry,
        fetch_context_factory=context_factory,
        normalizer=ListingNormalizer(property_type_aliases=registry.property_type_aliases()),
        reconciliation=ReconciliationEngine(stores.listings),
        job_store=stores.jobs,
        audit_store=stores.audit,
        config_store=stores.configs,
        sink=sink,
        flush_interval=flush_interval,
        clock=FakeClock(),
    )
    return PipelineHarness(stores=stores, registry=registry, sink=sink, pipeline=pipeline, contexts=contexts)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def harness_factory() -> Callable[..., PipelineHarness]:
    return build_harness
