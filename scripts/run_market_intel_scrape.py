"""
Run a market-intelligence scrape for one tenant from the CLI.

The scrape runs in the foreground and the final progress report is printed
as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging

from app.config import get_market_intel_settings
from app.market_intel.errors import ActiveScrapeJobError, ScrapeConfigurationError
from app.market_intel.runtime import build_pipeline, build_sqlalchemy_stores
from app.market_intel.substrates import InProcessSubstrate, SynchronousTaskExecutor
from app.schemas.market_intel import to_progress_response
from app.services.market_intel_scrape_service import MarketIntelScrapeService
from db.session import get_session_factory


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a market-intelligence scrape for one tenant.")
    parser.add_argument("tenant_id", help="Organization identifier whose config drives the scrape.")
    parser.add_argument(
        "--platform",
        dest="platforms",
        action="append",
        default=None,
        help="Restrict the run to a configured platform. Repeatable.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    settings = get_market_intel_settings()
    stores = build_sqlalchemy_stores(get_session_factory())
    pipeline = build_pipeline(settings, stores=stores)
    service = MarketIntelScrapeService(
        settings=settings,
        stores=stores,
        substrate=InProcessSubstrate(pipeline_factory=lambda: pipeline, job_store=stores.jobs),
    )

    try:
        submission = service.submit_scrape(
            tenant_id=args.tenant_id,
            executor=SynchronousTaskExecutor(),
            platforms=args.platforms,
        )
    except (ScrapeConfigurationError, ActiveScrapeJobError) as exc:
        print(json.dumps({"success": False, "error": str(exc)}, indent=2))
        return 1

    report = service.get_progress(tenant_id=args.tenant_id, job_id=submission.job_id)
    print(to_progress_response(report).model_dump_json(by_alias=True, indent=2))
    return 0 if report.status == "COMPLETED" else 1


if __name__ == "__main__":
    raise SystemExit(main())
