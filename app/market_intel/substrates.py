"""
Execution substrates for scrape jobs.

Both substrates take a freshly created PENDING job and arrange for
``ScrapePipeline.run`` to execute it, either inside this process or as a
Kubernetes Job running the worker entrypoint.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

import requests
from fastapi import BackgroundTasks

from app.config import ClusterSettings
from app.domain.market_intel import (
    ScrapeJob,
    ScrapeJobStatus,
    ScrapeRequest,
    ScrapeSubmission,
    ScrapeSubstrate,
)
from app.market_intel.errors import ClusterSubmissionError
from app.market_intel.logging_utils import log_event, truncate_error
from app.market_intel.pipeline import ScrapePipeline
from app.market_intel.storage.base import ScrapeJobStore
from db.base import utcnow

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
SERVICE_ACCOUNT_CA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"


class TaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class ThreadPoolTaskExecutor:
    """
    Runs tasks on a small shared pool; used where no request lifecycle exists.
    """

    def __init__(self, *, max_workers: int = 2) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="market-intel")

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._pool.submit(task, *args, **kwargs)

    def shutdown(self, *, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait)


class SynchronousTaskExecutor:
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        task(*args, **kwargs)


class ExecutionSubstrate(Protocol):
    name: str

    def submit(
        self,
        job: ScrapeJob,
        request: ScrapeRequest,
        *,
        executor: TaskExecutor | None = None,
    ) -> ScrapeSubmission:
        ...


class InProcessSubstrate:
    name = ScrapeSubstrate.INLINE

    def __init__(
        self,
        *,
        pipeline_factory: Callable[[], ScrapePipeline],
        job_store: ScrapeJobStore,
        default_executor: TaskExecutor | None = None,
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._job_store = job_store
        self._default_executor = default_executor

    def submit(
        self,
        job: ScrapeJob,
        request: ScrapeRequest,
        *,
        executor: TaskExecutor | None = None,
    ) -> ScrapeSubmission:
        target = executor or self._default_executor
        if target is None:
            raise RuntimeError("No task executor available for in-process scrape.")
        target.submit(self._run_job, job, request)
        return ScrapeSubmission(job_id=job.id, platforms=request.platforms, substrate=self.name)

    def _run_job(self, job: ScrapeJob, request: ScrapeRequest) -> None:
        try:
            self._pipeline_factory().run(job, request)
        except Exception as exc:
            logger.exception("In-process scrape job %s failed outside the pipeline", job.id)
            self._mark_job_failed(job, exc)

    def _mark_job_failed(self, job: ScrapeJob, exc: Exception) -> None:
        try:
            self._job_store.finish_job(
                job.id,
                status=ScrapeJobStatus.FAILED,
                completed_at=utcnow(),
                error_message=truncate_error(exc),
            )
        except Exception:
            logger.exception("Failed to persist FAILED status for scrape job %s", job.id)


class ClusterSubstrate:
    """
    Submits scrape jobs as Kubernetes batch/v1 Jobs.
    """

    name = ScrapeSubstrate.CLUSTER

    def __init__(
        self,
        *,
        settings: ClusterSettings,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    def submit(
        self,
        job: ScrapeJob,
        request: ScrapeRequest,
        *,
        executor: TaskExecutor | None = None,
    ) -> ScrapeSubmission:
        manifest = self.build_job_manifest(job, request)
        job_name = manifest["metadata"]["name"]
        url = f"{self._settings.api_url}/apis/batch/v1/namespaces/{self._settings.namespace}/jobs"
        try:
            response = self._session.post(
                url,
                json=manifest,
                headers=self._headers(),
                timeout=30,
                verify=self._verify(),
            )
        except requests.RequestException as exc:
            raise ClusterSubmissionError(f"Kubernetes API unreachable: {exc}") from exc

        if response.status_code not in (200, 201, 202):
            raise ClusterSubmissionError(
                f"Kubernetes API rejected job {job_name}: status={response.status_code} body={response.text[:500]}"
            )

        log_event(
            logger,
            logging.INFO,
            "cluster_job_submitted",
            job_id=job.id,
            tenant_id=request.tenant_id,
            namespace=self._settings.namespace,
            job_name=job_name,
        )
        return ScrapeSubmission(
            job_id=job.id,
            platforms=request.platforms,
            substrate=self.name,
            external_job_name=job_name,
        )

    def build_job_manifest(self, job: ScrapeJob, request: ScrapeRequest) -> dict[str, Any]:
        job_name = f"market-intel-scrape-{job.id.hex[:12]}"
        labels = {
            "app": "market-intel-worker",
            "market-intel/job-id": str(job.id),
        }
        return {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {
                "name": job_name,
                "namespace": self._settings.namespace,
                "labels": labels,
            },
            "spec": {
                "ttlSecondsAfterFinished": self._settings.ttl_seconds_after_finished,
                "activeDeadlineSeconds": self._settings.active_deadline_seconds,
                "backoffLimit": 0,
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "restartPolicy": "Never",
                        "containers": [
                            {
                                "name": "worker",
                                "image": self._settings.worker_image,
                                "command": ["python", "-m", "app.market_intel.worker"],
                                "env": [
                                    {"name": "JOB_ID", "value": str(job.id)},
                                    {"name": "ORGANIZATION_ID", "value": request.tenant_id},
                                    {"name": "PAYLOAD", "value": json.dumps(request.to_payload())},
                                ],
                                "envFrom": [{"secretRef": {"name": self._settings.worker_secret}}],
                            }
                        ],
                    },
                },
            },
        }

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._settings.service_account_token
        if token is None and os.path.exists(SERVICE_ACCOUNT_TOKEN_PATH):
            with open(SERVICE_ACCOUNT_TOKEN_PATH, encoding="utf-8") as handle:
                token = handle.read().strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _verify(self) -> bool | str:
        if not self._settings.verify_tls:
            return False
        if os.path.exists(SERVICE_ACCOUNT_CA_PATH):
            return SERVICE_ACCOUNT_CA_PATH
        return True
