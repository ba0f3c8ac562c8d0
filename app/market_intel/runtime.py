"""
Wiring of stores, fetch plumbing and the scrape pipeline.

The HTTP service, the scheduler and the cluster worker all build their
pipeline here so every substrate runs identical code.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import requests
from sqlalchemy.orm import Session

from app.config import MarketIntelSettings
from app.market_intel.events import ProgressSink, build_progress_sink
from app.market_intel.normalization import ListingNormalizer
from app.market_intel.pipeline import ScrapePipeline
from app.market_intel.platforms.base import FetchContext
from app.market_intel.platforms.registry import PlatformRegistry
from app.market_intel.rate_limiter import DomainRateLimiter
from app.market_intel.reconciliation import ReconciliationEngine
from app.market_intel.robots import RobotsPolicyManager
from app.market_intel.storage.base import (
    ListingStore,
    OrgConfigStore,
    RunAuditStore,
    ScrapeJobStore,
)
from app.market_intel.storage.sqlalchemy_storage import (
    SQLAlchemyListingStore,
    SQLAlchemyOrgConfigStore,
    SQLAlchemyRunAuditStore,
    SQLAlchemyScrapeJobStore,
)


@dataclass(frozen=True)
class MarketIntelStores:
    jobs: ScrapeJobStore
    listings: ListingStore
    audit: RunAuditStore
    configs: OrgConfigStore


def build_sqlalchemy_stores(session_factory: Callable[[], Session]) -> MarketIntelStores:
    return MarketIntelStores(
        jobs=SQLAlchemyScrapeJobStore(session_factory=session_factory),
        listings=SQLAlchemyListingStore(session_factory=session_factory),
        audit=SQLAlchemyRunAuditStore(session_factory=session_factory),
        configs=SQLAlchemyOrgConfigStore(session_factory=session_factory),
    )


def fetch_context_factory(settings: MarketIntelSettings) -> Callable[[], FetchContext]:
    """
    Factory producing a fresh HTTP session and compliance helpers per run.

    The rate limiter is shared across runs so concurrent jobs still pace
    requests to the same host.
    """

    rate_limiter = DomainRateLimiter(
        default_rate_limit_per_second=settings.fetch.default_rate_limit_per_second,
    )

    def build() -> FetchContext:
        session = requests.Session()
        return FetchContext(
            session=session,
            settings=settings.fetch,
            robots_policy=RobotsPolicyManager(
                session=session,
                timeout_seconds=min(10.0, settings.fetch.timeout_seconds),
                enabled=settings.fetch.respect_robots,
                allow_when_unreachable=settings.fetch.allow_when_robots_unreachable,
            ),
            rate_limiter=rate_limiter,
        )

    return build


def build_pipeline(
    settings: MarketIntelSettings,
    *,
    stores: MarketIntelStores,
    registry: PlatformRegistry | None = None,
    sink: ProgressSink | None = None,
) -> ScrapePipeline:
    registry = registry or PlatformRegistry()
    return ScrapePipeline(
        registry=registry,
        fetch_context_factory=fetch_context_factory(settings),
        normalizer=ListingNormalizer(property_type_aliases=registry.property_type_aliases()),
        reconciliation=ReconciliationEngine(stores.listings),
        job_store=stores.jobs,
        audit_store=stores.audit,
        config_store=stores.configs,
        sink=sink if sink is not None else build_progress_sink(settings.redis_url),
        flush_interval=settings.progress_flush_interval,
        max_platform_errors=settings.max_platform_errors,
    )
