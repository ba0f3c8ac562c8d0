"""
Entrypoint executed inside a cluster Job pod.

The pod receives ``JOB_ID``, ``ORGANIZATION_ID`` and a JSON ``PAYLOAD`` in its
environment and runs the same pipeline the in-process substrate uses.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Mapping

from app.config import get_market_intel_settings
from app.domain.market_intel import ScrapeJobStatus, ScrapeRequest
from app.market_intel.logging_utils import log_event, truncate_error
from app.market_intel.runtime import MarketIntelStores, build_pipeline, build_sqlalchemy_stores
from db.base import utcnow

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_BAD_INPUT = 2


class WorkerInputError(ValueError):
    """Raised when the pod environment does not describe a runnable job."""


def parse_worker_env(environ: Mapping[str, str]) -> tuple[uuid.UUID, ScrapeRequest]:
    raw_job_id = (environ.get("JOB_ID") or "").strip()
    tenant_id = (environ.get("ORGANIZATION_ID") or "").strip()
    raw_payload = environ.get("PAYLOAD") or "{}"

    if not raw_job_id or not tenant_id:
        raise WorkerInputError("JOB_ID and ORGANIZATION_ID are required.")
    try:
        job_id = uuid.UUID(raw_job_id)
    except ValueError as exc:
        raise WorkerInputError(f"JOB_ID is not a UUID: {raw_job_id!r}") from exc
    try:
        payload = json.loads(raw_payload)
    except json.JSONDecodeError as exc:
        raise WorkerInputError(f"PAYLOAD is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise WorkerInputError("PAYLOAD must be a JSON object.")

    return job_id, ScrapeRequest.from_payload(tenant_id=tenant_id, payload=payload)


def run_job(job_id: uuid.UUID, request: ScrapeRequest, *, stores: MarketIntelStores) -> int:
    job = stores.jobs.get_job(job_id)
    if job is None or job.tenant_id != request.tenant_id:
        log_event(logger, logging.ERROR, "worker_job_missing", job_id=job_id, tenant_id=request.tenant_id)
        return EXIT_BAD_INPUT

    pipeline = build_pipeline(get_market_intel_settings(), stores=stores)
    final = pipeline.run(job, request)
    log_event(
        logger,
        logging.INFO,
        "worker_job_finished",
        job_id=job_id,
        tenant_id=request.tenant_id,
        status=final.status,
    )
    return EXIT_JOB_FAILED if final.status == ScrapeJobStatus.FAILED else EXIT_OK


def main(environ: Mapping[str, str] | None = None) -> int:
    environ = os.environ if environ is None else environ
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    from db.session import get_session_factory

    stores = build_sqlalchemy_stores(get_session_factory())
    try:
        job_id, request = parse_worker_env(environ)
    except WorkerInputError as exc:
        logger.error("Worker input rejected: %s", exc)
        raw_job_id = (environ.get("JOB_ID") or "").strip()
        _fail_job_if_known(stores, raw_job_id, exc)
        return EXIT_BAD_INPUT

    return run_job(job_id, request, stores=stores)


def _fail_job_if_known(stores: MarketIntelStores, raw_job_id: str, exc: Exception) -> None:
    try:
        job_id = uuid.UUID(raw_job_id)
    except ValueError:
        return
    stores.jobs.finish_job(
        job_id,
        status=ScrapeJobStatus.FAILED,
        completed_at=utcnow(),
        error_message=truncate_error(exc),
    )


if __name__ == "__main__":
    raise SystemExit(main())
