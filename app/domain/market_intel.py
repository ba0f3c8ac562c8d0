"""
app/domain/market_intel.py

Domain models for market-intelligence scrape orchestration.

Progress values are immutable. Every change goes through
``JobProgress.merge`` with a ``ProgressDelta`` so counters only grow and
statuses only advance.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any

from app.market_intel.errors import InvalidJobTransitionError


class ScrapeJobStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    ACTIVE = (PENDING, RUNNING)
    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class PlatformStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    _RANK = {PENDING: 0, RUNNING: 1, COMPLETED: 2, FAILED: 2}

    @classmethod
    def rank(cls, status: str) -> int:
        try:
            return cls._RANK[status]
        except KeyError as exc:
            raise InvalidJobTransitionError(f"Unknown platform status: {status}") from exc

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in (cls.COMPLETED, cls.FAILED)


class ActionType:
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    SCROLLING = "scrolling"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    SAVING = "saving"
    WAITING = "waiting"


class ScrapeSubstrate:
    INLINE = "inline"
    CLUSTER = "cluster"


class OrgConfigStatus:
    PENDING_SETUP = "PENDING_SETUP"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    PAUSED = "PAUSED"


# A tenant config is parked in ERROR after this many failed runs in a row.
ERROR_AFTER_CONSECUTIVE_FAILURES = 3


class ScrapeFrequency:
    HOURLY = "HOURLY"
    TWICE_DAILY = "TWICE_DAILY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"

    _INTERVALS = {
        HOURLY: timedelta(hours=1),
        TWICE_DAILY: timedelta(hours=12),
        DAILY: timedelta(days=1),
        WEEKLY: timedelta(days=7),
    }

    @classmethod
    def next_run_after(cls, frequency: str | None, now: datetime) -> datetime:
        return now + cls._INTERVALS.get((frequency or "").upper(), cls._INTERVALS[cls.DAILY])


class RunLogStatus:
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Progress model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CurrentAction:
    """
    Transient UI annotation describing what the pipeline is doing right now.
    """

    type: str
    message: str
    property_title: str | None = None
    platform: str | None = None
    page: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "message": self.message}
        if self.property_title is not None:
            payload["propertyTitle"] = self.property_title
        if self.platform is not None:
            payload["platform"] = self.platform
        if self.page is not None:
            payload["page"] = self.page
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CurrentAction | None:
        if not data:
            return None
        return cls(
            type=str(data.get("type", ActionType.WAITING)),
            message=str(data.get("message", "")),
            property_title=data.get("propertyTitle"),
            platform=data.get("platform"),
            page=data.get("page"),
        )


@dataclass(frozen=True)
class ProgressDelta:
    """
    Increment applied to one platform's progress.
    """

    total: int = 0
    passed: int = 0
    failed: int = 0
    errors: tuple[str, ...] = ()
    status: str | None = None

    def __post_init__(self) -> None:
        if self.total < 0 or self.passed < 0 or self.failed < 0:
            raise ValueError("Progress deltas cannot be negative.")


@dataclass(frozen=True)
class PlatformProgress:
    status: str = PlatformStatus.PENDING
    total: int = 0
    passed: int = 0
    failed: int = 0
    errors: tuple[str, ...] = ()

    def apply(self, delta: ProgressDelta, *, max_errors: int) -> PlatformProgress:
        status = self.status
        if delta.status is not None and delta.status != status:
            if PlatformStatus.rank(delta.status) < PlatformStatus.rank(status):
                raise InvalidJobTransitionError(
                    f"Platform status cannot move from {status} to {delta.status}"
                )
            # first terminal status wins
            if not PlatformStatus.is_terminal(status):
                status = delta.status

        errors = list(self.errors)
        for message in delta.errors:
            if message and message not in errors and len(errors) < max_errors:
                errors.append(message)

        return PlatformProgress(
            status=status,
            total=self.total + delta.total,
            passed=self.passed + delta.passed,
            failed=self.failed + delta.failed,
            errors=tuple(errors),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlatformProgress:
        return cls(
            status=str(data.get("status", PlatformStatus.PENDING)),
            total=int(data.get("total", 0)),
            passed=int(data.get("passed", 0)),
            failed=int(data.get("failed", 0)),
            errors=tuple(str(item) for item in data.get("errors", [])),
        )


@dataclass(frozen=True)
class JobProgress:
    """
    Per-platform progress snapshot owned by one scrape job.
    """

    platforms: dict[str, PlatformProgress] = field(default_factory=dict)

    @classmethod
    def initial(cls, platform_ids: list[str]) -> JobProgress:
        return cls(platforms={platform_id: PlatformProgress() for platform_id in platform_ids})

    def get(self, platform_id: str) -> PlatformProgress:
        return self.platforms.get(platform_id, PlatformProgress())

    def merge(self, platform_id: str, delta: ProgressDelta, *, max_errors: int = 20) -> JobProgress:
        updated = dict(self.platforms)
        updated[platform_id] = self.get(platform_id).apply(delta, max_errors=max_errors)
        return JobProgress(platforms=updated)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {platform_id: item.to_dict() for platform_id, item in self.platforms.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JobProgress:
        if not data:
            return cls()
        return cls(
            platforms={
                str(platform_id): PlatformProgress.from_dict(item)
                for platform_id, item in data.items()
                if isinstance(item, dict)
            }
        )


# ---------------------------------------------------------------------------
# Jobs and configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScrapeFilters:
    areas: tuple[str, ...] = ()
    municipalities: tuple[str, ...] = ()
    min_price: int | None = None
    max_price: int | None = None
    property_types: tuple[str, ...] = ()
    transaction_types: tuple[str, ...] = ()

    @property
    def transaction_type(self) -> str:
        return self.transaction_types[0] if self.transaction_types else "sale"

    @property
    def locations(self) -> tuple[str, ...]:
        return self.areas or self.municipalities

    def accepts_price(self, price: int | None) -> bool:
        if price is None:
            return True
        if self.min_price is not None and price < self.min_price:
            return False
        if self.max_price is not None and price > self.max_price:
            return False
        return True


@dataclass(frozen=True)
class ScrapeRequest:
    """
    Everything a substrate needs to execute one scrape job.
    """

    tenant_id: str
    platforms: tuple[str, ...]
    filters: ScrapeFilters
    max_pages_per_platform: int
    min_successful_platforms: int = 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "market-intel-scrape",
            "platforms": list(self.platforms),
            "targetAreas": list(self.filters.areas),
            "targetMunicipalities": list(self.filters.municipalities),
            "transactionTypes": list(self.filters.transaction_types),
            "propertyTypes": list(self.filters.property_types),
            "minPrice": self.filters.min_price,
            "maxPrice": self.filters.max_price,
            "maxPagesPerPlatform": self.max_pages_per_platform,
            "minSuccessfulPlatforms": self.min_successful_platforms,
        }

    @classmethod
    def from_payload(cls, *, tenant_id: str, payload: dict[str, Any]) -> ScrapeRequest:
        return cls(
            tenant_id=tenant_id,
            platforms=tuple(payload.get("platforms") or ()),
            filters=ScrapeFilters(
                areas=tuple(payload.get("targetAreas") or ()),
                municipalities=tuple(payload.get("targetMunicipalities") or ()),
                min_price=payload.get("minPrice"),
                max_price=payload.get("maxPrice"),
                property_types=tuple(payload.get("propertyTypes") or ()),
                transaction_types=tuple(payload.get("transactionTypes") or ()),
            ),
            max_pages_per_platform=max(1, int(payload.get("maxPagesPerPlatform") or 1)),
            min_successful_platforms=max(1, int(payload.get("minSuccessfulPlatforms") or 1)),
        )


@dataclass(frozen=True)
class OrgScrapeConfig:
    tenant_id: str
    is_enabled: bool
    platforms: tuple[str, ...]
    target_areas: tuple[str, ...] = ()
    target_municipalities: tuple[str, ...] = ()
    transaction_types: tuple[str, ...] = ("sale",)
    property_types: tuple[str, ...] = ()
    min_price: int | None = None
    max_price: int | None = None
    max_pages_per_platform: int = 10
    min_successful_platforms: int = 1
    status: str = OrgConfigStatus.PENDING_SETUP
    scrape_frequency: str = ScrapeFrequency.DAILY
    consecutive_failures: int = 0
    last_scrape_at: datetime | None = None
    next_scrape_at: datetime | None = None
    last_error: str | None = None

    def to_request(self) -> ScrapeRequest:
        return ScrapeRequest(
            tenant_id=self.tenant_id,
            platforms=self.platforms,
            filters=ScrapeFilters(
                areas=self.target_areas,
                municipalities=self.target_municipalities,
                min_price=self.min_price,
                max_price=self.max_price,
                property_types=self.property_types,
                transaction_types=self.transaction_types,
            ),
            max_pages_per_platform=max(1, self.max_pages_per_platform),
            min_successful_platforms=max(1, self.min_successful_platforms),
        )

    def with_run_outcome(
        self,
        *,
        success: bool,
        finished_at: datetime,
        error: str | None = None,
    ) -> OrgScrapeConfig:
        failures = 0 if success else self.consecutive_failures + 1
        status = OrgConfigStatus.ACTIVE
        if failures >= ERROR_AFTER_CONSECUTIVE_FAILURES:
            status = OrgConfigStatus.ERROR
        return replace(
            self,
            status=status,
            consecutive_failures=failures,
            last_scrape_at=finished_at,
            next_scrape_at=ScrapeFrequency.next_run_after(self.scrape_frequency, finished_at),
            last_error=None if success else error,
        )


@dataclass(frozen=True)
class ScrapeJob:
    id: uuid.UUID
    tenant_id: str
    status: str
    platforms: tuple[str, ...]
    progress: JobProgress
    current_platform: str | None = None
    current_action: CurrentAction | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    substrate: str = ScrapeSubstrate.INLINE
    external_job_name: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ScrapeJobStatus.ACTIVE

    def with_updates(self, **changes: Any) -> ScrapeJob:
        return replace(self, **changes)


@dataclass(frozen=True)
class ScrapeSubmission:
    job_id: uuid.UUID
    platforms: tuple[str, ...]
    substrate: str
    external_job_name: str | None = None


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawListing:
    """
    Listing as extracted from one platform, before normalization.
    """

    source_listing_id: str
    source_url: str
    title: str | None = None
    price: int | None = None
    price_text: str | None = None
    property_type: str | None = None
    transaction_type: str | None = None
    address: str | None = None
    area: str | None = None
    municipality: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    size_sqm: int | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    floor: str | None = None
    year_built: int | None = None
    agency_name: str | None = None
    agency_phone: str | None = None
    images: tuple[str, ...] = ()
    listing_date: date | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalListing:
    tenant_id: str
    source_platform: str
    source_listing_id: str
    source_url: str
    last_seen_at: datetime
    title: str | None = None
    price: int | None = None
    price_text: str | None = None
    price_per_sqm: int | None = None
    property_type: str | None = None
    transaction_type: str = "sale"
    address: str | None = None
    area: str | None = None
    municipality: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    size_sqm: int | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    floor: str | None = None
    year_built: int | None = None
    agency_name: str | None = None
    agency_phone: str | None = None
    images: tuple[str, ...] = ()
    listing_date: date | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.source_platform, self.source_listing_id)


@dataclass(frozen=True)
class StoredListingState:
    """
    The parts of a stored listing reconciliation needs to compare against.
    """

    listing_id: uuid.UUID
    price: int | None
    is_active: bool


@dataclass(frozen=True)
class UpsertResult:
    is_new: bool
    price_changed: bool


@dataclass(frozen=True)
class ScrapeRunLogEntry:
    """
    One append-only audit entry for a platform pass.
    """

    id: uuid.UUID
    tenant_id: str
    platform: str
    status: str
    started_at: datetime
    job_id: uuid.UUID | None = None
    completed_at: datetime | None = None
    listings_found: int = 0
    listings_new: int = 0
    listings_updated: int = 0
    listings_deactivated: int = 0
    pages_scraped: int = 0
    duration_ms: int | None = None
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class PlatformRunResult:
    status: str
    listings_found: int
    listings_new: int
    listings_updated: int
    listings_deactivated: int
    pages_scraped: int
    duration_ms: int
    errors: tuple[str, ...] = ()
