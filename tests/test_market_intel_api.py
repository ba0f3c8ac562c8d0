"""
tests/test_market_intel_api.py

HTTP tests for the market-intelligence scrape router.

The router is mounted on a bare FastAPI app and the service dependency is
overridden with one backed by in-memory stores, so requests run the real
pipeline against scripted fetchers.

Coverage
--------
- POST trigger: success, 409 conflict with the active job id, 400 for config errors
- GET job progress: camelCase payload, 404 for unknown or foreign jobs
- DELETE cancel: active job cancelled, terminal job rejected with 400
- GET status summary
- Missing organization header
"""

from __future__ import annotations

import uuid

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.routers import market_intel_scrape_router
from app.domain.market_intel import OrgConfigStatus, ScrapeJobStatus
from app.market_intel.substrates import InProcessSubstrate, SynchronousTaskExecutor
from app.services.market_intel_scrape_service import (
    MarketIntelScrapeService,
    get_market_intel_scrape_service,
)
from conftest import TENANT, build_harness, fetch_result, make_config, make_raw_listing, make_settings

HEADERS = {"X-Organization-Id": TENANT}


def _client(configs=None):
    harness = build_harness(
        {
            "a": fetch_result(make_raw_listing("a-1"), make_raw_listing("a-2")),
            "b": fetch_result(make_raw_listing("b-1")),
        },
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
    app = FastAPI()
    app.include_router(market_intel_scrape_router)
    app.dependency_overrides[get_market_intel_scrape_service] = lambda: service
    return TestClient(app), harness


@pytest.fixture()
def client_and_harness():
    return _client()


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------


class TestTriggerScrape:
    def test_trigger_runs_job_in_background(self, client_and_harness) -> None:
        client, harness = client_and_harness

        response = client.post("/market-intel/scrape", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["platforms"] == ["a", "b"]
        assert body["substrate"] == "inline"
        job = harness.jobs.get_job(uuid.UUID(body["jobId"]))
        assert job.status == ScrapeJobStatus.COMPLETED

    def test_platform_subset(self, client_and_harness) -> None:
        client, _ = client_and_harness

        response = client.post("/market-intel/scrape", headers=HEADERS, json={"platforms": ["b"]})

        assert response.status_code == 200
        assert response.json()["platforms"] == ["b"]

    def test_active_job_conflict_returns_its_id(self, client_and_harness) -> None:
        client, harness = client_and_harness
        active = harness.jobs.create_job(tenant_id=TENANT, platforms=("a",), substrate="inline")

        response = client.post("/market-intel/scrape", headers=HEADERS)

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["jobId"] == str(active.id)

    @pytest.mark.parametrize(
        ("configs", "message"),
        [
            ([], "not configured"),
            ([make_config(is_enabled=False)], "disabled"),
            ([make_config(status=OrgConfigStatus.PAUSED)], "paused"),
            ([make_config(platforms=())], "No platforms"),
        ],
    )
    def test_configuration_errors_return_400(self, configs, message) -> None:
        client, harness = _client(configs=configs)

        response = client.post("/market-intel/scrape", headers=HEADERS)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert message in body["error"]
        assert "jobId" not in body
        assert harness.jobs.jobs == {}

    def test_unconfigured_platform_subset_rejected(self, client_and_harness) -> None:
        client, _ = client_and_harness

        response = client.post("/market-intel/scrape", headers=HEADERS, json={"platforms": ["zzz"]})

        assert response.status_code == 400
        assert "zzz" in response.json()["error"]

    def test_missing_organization_header(self, client_and_harness) -> None:
        client, _ = client_and_harness

        response = client.post("/market-intel/scrape")

        assert response.status_code == 400
        assert response.json()["detail"] == "X-Organization-Id header is required."


# ---------------------------------------------------------------------------
# Progress and cancellation
# ---------------------------------------------------------------------------


class TestJobProgressEndpoint:
    def test_progress_payload_uses_camel_case(self, client_and_harness) -> None:
        client, _ = client_and_harness
        job_id = client.post("/market-intel/scrape", headers=HEADERS).json()["jobId"]

        response = client.get(f"/market-intel/scrape/jobs/{job_id}", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == ScrapeJobStatus.COMPLETED
        assert body["summary"]["totalAnalyzed"] == 3
        assert body["summary"]["totalPassed"] == 3
        assert body["progress"]["a"]["passed"] == 2
        assert body["currentAction"] is None
        assert body["elapsedSeconds"] is not None

    def test_unknown_job_is_404(self, client_and_harness) -> None:
        client, _ = client_and_harness
        response = client.get(f"/market-intel/scrape/jobs/{uuid.uuid4()}", headers=HEADERS)
        assert response.status_code == 404

    def test_other_tenants_job_is_404(self, client_and_harness) -> None:
        client, harness = client_and_harness
        foreign = harness.jobs.create_job(tenant_id="org-2", platforms=("a",), substrate="inline")

        response = client.get(f"/market-intel/scrape/jobs/{foreign.id}", headers=HEADERS)

        assert response.status_code == 404


class TestCancelEndpoint:
    def test_cancel_active_job(self, client_and_harness) -> None:
        client, harness = client_and_harness
        job = harness.jobs.create_job(tenant_id=TENANT, platforms=("a",), substrate="inline")

        response = client.delete(f"/market-intel/scrape/jobs/{job.id}", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == ScrapeJobStatus.CANCELLED
        assert response.json()["errorMessage"] == "Cancelled by user"

    def test_cancel_terminal_job_is_400(self, client_and_harness) -> None:
        client, _ = client_and_harness
        job_id = client.post("/market-intel/scrape", headers=HEADERS).json()["jobId"]

        response = client.delete(f"/market-intel/scrape/jobs/{job_id}", headers=HEADERS)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["jobId"] == job_id

    def test_cancel_unknown_job_is_404(self, client_and_harness) -> None:
        client, _ = client_and_harness
        response = client.delete(f"/market-intel/scrape/jobs/{uuid.uuid4()}", headers=HEADERS)
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Status summary
# ---------------------------------------------------------------------------


class TestStatusEndpoint:
    def test_summary_after_a_run(self, client_and_harness) -> None:
        client, _ = client_and_harness
        job_id = client.post("/market-intel/scrape", headers=HEADERS).json()["jobId"]

        response = client.get("/market-intel/scrape", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["configured"] is True
        assert body["config"]["isEnabled"] is True
        assert body["config"]["consecutiveFailures"] == 0
        assert body["activeJob"] is None
        assert [job["id"] for job in body["recentJobs"]] == [job_id]
        assert {entry["platform"] for entry in body["recentLogs"]} == {"a", "b"}

    def test_unconfigured_tenant(self) -> None:
        client, _ = _client(configs=[])

        body = client.get("/market-intel/scrape", headers=HEADERS).json()

        assert body["configured"] is False
        assert body["config"] is None
