"""
tests/test_cluster_substrate.py

Pytest tests for execution substrates and the scrape service's submission
boundary.

Coverage
--------
- Kubernetes Job manifest shape and worker environment
- Submission success records the external job name
- Non-2xx responses and transport errors raise ClusterSubmissionError
- A failed submission leaves the job FAILED and frees the tenant slot
- In-process substrate marks the job FAILED when the pipeline crashes
"""

from __future__ import annotations

import json

import pytest
import requests

from app.config import ClusterSettings
from app.domain.market_intel import ScrapeJobStatus, ScrapeRequest, ScrapeSubstrate
from app.market_intel.errors import ClusterSubmissionError
from app.market_intel.substrates import ClusterSubstrate, InProcessSubstrate, SynchronousTaskExecutor
from app.services.market_intel_scrape_service import SCHEDULING_FAILED_MESSAGE, MarketIntelScrapeService
from conftest import (
    TENANT,
    FakeHTTPSession,
    FakeResponse,
    InMemoryScrapeJobStore,
    build_harness,
    make_config,
    make_settings,
)

JOBS_URL = "https://k8s.test/apis/batch/v1/namespaces/scrapes/jobs"


def _cluster(session: FakeHTTPSession) -> ClusterSubstrate:
    settings = ClusterSettings(
        api_url="https://k8s.test",
        namespace="scrapes",
        service_account_token="token",
        worker_image="registry.test/worker:1",
        verify_tls=False,
    )
    return ClusterSubstrate(settings=settings, session=session)  # type: ignore[arg-type]


def _service(substrate, harness) -> MarketIntelScrapeService:
    return MarketIntelScrapeService(settings=make_settings(), stores=harness.stores, substrate=substrate)


class TestClusterManifest:
    def test_manifest_runs_worker_with_job_environment(self) -> None:
        store = InMemoryScrapeJobStore()
        job = store.create_job(tenant_id=TENANT, platforms=("a", "b"), substrate=ScrapeSubstrate.CLUSTER)
        request = make_config().to_request()

        manifest = _cluster(FakeHTTPSession()).build_job_manifest(job, request)

        assert manifest["kind"] == "Job"
        assert manifest["metadata"]["name"] == f"market-intel-scrape-{job.id.hex[:12]}"
        assert manifest["spec"]["backoffLimit"] == 0
        [container] = manifest["spec"]["template"]["spec"]["containers"]
        assert container["image"] == "registry.test/worker:1"
        env = {item["name"]: item["value"] for item in container["env"]}
        assert env["JOB_ID"] == str(job.id)
        assert env["ORGANIZATION_ID"] == TENANT
        payload = json.loads(env["PAYLOAD"])
        assert payload["platforms"] == ["a", "b"]
        assert ScrapeRequest.from_payload(tenant_id=TENANT, payload=payload) == request


class TestClusterSubmission:
    def test_accepted_submission_records_job_name(self) -> None:
        harness = build_harness({})
        session = FakeHTTPSession({JOBS_URL: FakeResponse(201, "{}")})
        service = _service(_cluster(session), harness)

        submission = service.submit_scrape(tenant_id=TENANT)

        assert submission.substrate == ScrapeSubstrate.CLUSTER
        assert submission.external_job_name.startswith("market-intel-scrape-")
        [(url, manifest)] = session.posted
        assert url == JOBS_URL
        assert manifest["metadata"]["name"] == submission.external_job_name
        job = harness.jobs.get_job(submission.job_id)
        assert job.status == ScrapeJobStatus.PENDING
        assert job.external_job_name == submission.external_job_name

    @pytest.mark.parametrize(
        "outcome",
        [FakeResponse(403, "forbidden"), requests.ConnectionError("refused")],
    )
    def test_rejected_submission_fails_job(self, outcome) -> None:
        harness = build_harness({})
        service = _service(_cluster(FakeHTTPSession({JOBS_URL: outcome})), harness)

        with pytest.raises(ClusterSubmissionError):
            service.submit_scrape(tenant_id=TENANT)

        [job] = harness.jobs.jobs.values()
        assert job.status == ScrapeJobStatus.FAILED
        assert job.error_message == SCHEDULING_FAILED_MESSAGE
        assert harness.jobs.find_active_job(TENANT) is None


class TestInProcessSubstrate:
    def test_pipeline_crash_marks_job_failed(self) -> None:
        harness = build_harness({})

        def broken_pipeline():
            raise RuntimeError("wiring exploded")

        substrate = InProcessSubstrate(
            pipeline_factory=broken_pipeline,
            job_store=harness.jobs,
            default_executor=SynchronousTaskExecutor(),
        )

        submission = _service(substrate, harness).submit_scrape(tenant_id=TENANT)

        job = harness.jobs.get_job(submission.job_id)
        assert job.status == ScrapeJobStatus.FAILED
        assert job.error_message == "RuntimeError: wiring exploded"

    def test_missing_executor_fails_submission(self) -> None:
        harness = build_harness({}, configs=[make_config()])
        substrate = InProcessSubstrate(pipeline_factory=lambda: harness.pipeline, job_store=harness.jobs)

        with pytest.raises(RuntimeError):
            _service(substrate, harness).submit_scrape(tenant_id=TENANT)

        [job] = harness.jobs.jobs.values()
        assert job.status == ScrapeJobStatus.FAILED
