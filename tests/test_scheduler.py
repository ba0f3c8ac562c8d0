"""
tests/test_scheduler.py

Pytest tests for the periodic due-scrape submission job.
"""

from __future__ import annotations

from datetime import timedelta

from app.market_intel.substrates import InProcessSubstrate, SynchronousTaskExecutor
from app.scheduler.jobs import submit_due_scrapes
from app.services.market_intel_scrape_service import MarketIntelScrapeService
from conftest import OBSERVED_AT, build_harness, fetch_result, make_config, make_raw_listing, make_settings


def _service(configs):
    harness = build_harness(
        {"a": fetch_result(make_raw_listing("a-1")), "b": fetch_result(make_raw_listing("b-1"))},
        configs=configs,
    )
    service = MarketIntelScrapeService(
        settings=make_settings(),
        stores=harness.stores,
        substrate=InProcessSubstrate(
            pipeline_factory=lambda: harness.pipeline,
            job_store=harness.jobs,
            default_executor=SynchronousTaskExecutor(),
        ),
    )
    return service, harness


class TestSubmitDueScrapes:
    def test_submits_each_due_tenant(self) -> None:
        service, harness = _service([make_config(tenant_id="org-1"), make_config(tenant_id="org-2")])

        result = submit_due_scrapes(service)

        assert sorted(result.submitted) == ["org-1", "org-2"]
        assert len(harness.jobs.jobs) == 2
        assert harness.configs.get_config("org-1").next_scrape_at is not None

    def test_tenant_with_active_job_is_skipped(self) -> None:
        service, harness = _service([make_config(tenant_id="org-1"), make_config(tenant_id="org-2")])
        harness.jobs.create_job(tenant_id="org-1", platforms=("a",), substrate="inline")

        result = submit_due_scrapes(service)

        assert result.skipped == ["org-1"]
        assert result.submitted == ["org-2"]

    def test_not_yet_due_tenants_are_ignored(self) -> None:
        future = OBSERVED_AT + timedelta(days=3650)
        service, harness = _service([make_config(next_scrape_at=future)])

        result = submit_due_scrapes(service)

        assert (result.submitted, result.skipped, result.failed) == ([], [], [])
        assert harness.jobs.jobs == {}

    def test_config_error_is_counted_as_failed(self) -> None:
        service, _ = _service([make_config(platforms=())])

        result = submit_due_scrapes(service)

        assert result.failed == ["org-1"]
