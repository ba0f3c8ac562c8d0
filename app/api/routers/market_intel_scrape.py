"""
Market-intelligence scrape trigger, progress, cancellation and status endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from app.api.dependencies import get_tenant_id
from app.domain.market_intel import ScrapeSubstrate
from app.market_intel.errors import (
    ActiveScrapeJobError,
    ClusterSubmissionError,
    JobNotCancellableError,
    ScrapeConfigurationError,
    ScrapeJobNotFoundError,
)
from app.market_intel.progress import build_progress_report
from app.market_intel.substrates import FastAPIBackgroundTaskExecutor
from app.schemas.market_intel import (
    ScrapeErrorResponse,
    ScrapeProgressResponse,
    ScrapeStatusResponse,
    ScrapeTriggerRequest,
    ScrapeTriggerResponse,
    to_config_response,
    to_job_summary_response,
    to_progress_response,
    to_run_log_response,
    to_trigger_response,
)
from app.services.market_intel_scrape_service import (
    MarketIntelScrapeService,
    get_market_intel_scrape_service,
)

router = APIRouter(tags=["market-intel"])


def _error_response(status_code: int, error: str, job_id: UUID | None = None) -> JSONResponse:
    body = ScrapeErrorResponse(error=error, job_id=job_id)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.post(
    "/market-intel/scrape",
    response_model=ScrapeTriggerResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ScrapeErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ScrapeErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ScrapeErrorResponse},
    },
)
def trigger_scrape(
    background_tasks: BackgroundTasks,
    payload: ScrapeTriggerRequest | None = Body(default=None),
    tenant_id: str = Depends(get_tenant_id),
    service: MarketIntelScrapeService = Depends(get_market_intel_scrape_service),
) -> ScrapeTriggerResponse | JSONResponse:
    executor = None
    if service.substrate_name == ScrapeSubstrate.INLINE:
        executor = FastAPIBackgroundTaskExecutor(background_tasks)

    try:
        submission = service.submit_scrape(
            tenant_id=tenant_id,
            executor=executor,
            platforms=payload.platforms if payload is not None else None,
        )
    except ScrapeConfigurationError as exc:
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    except ActiveScrapeJobError as exc:
        return _error_response(status.HTTP_409_CONFLICT, str(exc), job_id=exc.job_id)
    except ClusterSubmissionError as exc:
        return _error_response(status.HTTP_502_BAD_GATEWAY, str(exc))

    return to_trigger_response(submission)


@router.get("/market-intel/scrape", response_model=ScrapeStatusResponse)
def get_scrape_status(
    tenant_id: str = Depends(get_tenant_id),
    service: MarketIntelScrapeService = Depends(get_market_intel_scrape_service),
) -> ScrapeStatusResponse:
    summary = service.get_status_summary(tenant_id=tenant_id)
    active_job = None
    if summary.active_job is not None:
        active_job = to_progress_response(build_progress_report(summary.active_job))
    return ScrapeStatusResponse(
        configured=summary.configured,
        config=to_config_response(summary.config),
        active_job=active_job,
        recent_jobs=[to_job_summary_response(job) for job in summary.recent_jobs],
        recent_logs=[to_run_log_response(entry) for entry in summary.recent_logs],
    )


@router.get("/market-intel/scrape/jobs/{job_id}", response_model=ScrapeProgressResponse)
def get_scrape_progress(
    job_id: UUID,
    tenant_id: str = Depends(get_tenant_id),
    service: MarketIntelScrapeService = Depends(get_market_intel_scrape_service),
) -> ScrapeProgressResponse:
    try:
        report = service.get_progress(tenant_id=tenant_id, job_id=job_id)
    except ScrapeJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return to_progress_response(report)


@router.delete(
    "/market-intel/scrape/jobs/{job_id}",
    response_model=ScrapeProgressResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ScrapeErrorResponse}},
)
def cancel_scrape(
    job_id: UUID,
    tenant_id: str = Depends(get_tenant_id),
    service: MarketIntelScrapeService = Depends(get_market_intel_scrape_service),
) -> ScrapeProgressResponse | JSONResponse:
    try:
        report = service.cancel(tenant_id=tenant_id, job_id=job_id)
    except ScrapeJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except JobNotCancellableError as exc:
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), job_id=exc.job_id)
    return to_progress_response(report)
