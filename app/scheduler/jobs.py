"""
app/scheduler/jobs.py

APScheduler-based runner for periodic market-intelligence scrapes.

Every ``MARKET_INTEL_SCHEDULER_INTERVAL_MINUTES`` the ``market_intel_due_scrapes``
job loads enabled, ``ACTIVE`` tenant configs whose ``next_scrape_at`` is due and
submits one scrape per tenant. Tenants that already have an active job are
skipped; the running job will reschedule them when it finishes.

Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_market_intel_settings
from app.market_intel.errors import ActiveScrapeJobError, MarketIntelError
from app.services.market_intel_scrape_service import (
    MarketIntelScrapeService,
    get_market_intel_scrape_service,
)

logger = logging.getLogger(__name__)

DUE_SCRAPES_JOB_ID = "market_intel_due_scrapes"


@dataclass
class DueScrapeRunResult:
    submitted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def submit_due_scrapes(
    service: MarketIntelScrapeService | None = None,
    *,
    limit: int = 50,
) -> DueScrapeRunResult:
    """
    Submit a scrape for each tenant whose config is due.

    One tenant's failure never stops the loop over the remaining tenants.
    """

    service = service or get_market_intel_scrape_service()
    result = DueScrapeRunResult()

    configs = service.list_due_configs(limit=limit)
    if not configs:
        logger.info("Scheduler: market_intel_due_scrapes found no due tenants")
        return result

    for config in configs:
        tenant_id = config.tenant_id
        try:
            submission = service.submit_scrape(tenant_id=tenant_id)
        except ActiveScrapeJobError as exc:
            result.skipped.append(tenant_id)
            logger.info(
                "Scheduler: tenant=%r already has active job %s, skipping",
                tenant_id,
                exc.job_id,
            )
        except MarketIntelError as exc:
            result.failed.append(tenant_id)
            logger.warning("Scheduler: scrape not submitted tenant=%r: %s", tenant_id, exc)
        except Exception:
            result.failed.append(tenant_id)
            logger.exception("Scheduler: scrape submission crashed tenant=%r", tenant_id)
        else:
            result.submitted.append(tenant_id)
            logger.info(
                "Scheduler: submitted scrape tenant=%r job_id=%s platforms=%s",
                tenant_id,
                submission.job_id,
                ",".join(submission.platforms),
            )

    logger.info(
        "Scheduler: market_intel_due_scrapes complete submitted=%d skipped=%d failed=%d",
        len(result.submitted),
        len(result.skipped),
        len(result.failed),
    )
    return result


def run_due_scrapes() -> None:
    try:
        submit_due_scrapes()
    except Exception:
        logger.exception("Scheduler: market_intel_due_scrapes failed")


def build_scheduler() -> BackgroundScheduler:
    """
    Returns a configured but *not yet started* ``BackgroundScheduler``.

    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    settings = get_market_intel_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_due_scrapes,
        trigger="interval",
        minutes=max(1, settings.scheduler_interval_minutes),
        id=DUE_SCRAPES_JOB_ID,
        name="Market intelligence due scrapes",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=600,
    )

    return scheduler
