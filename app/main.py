"""
app/main.py

FastAPI entrypoint for the market-intelligence scrape API.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

logger = logging.getLogger(__name__)

# The one-active-job-per-tenant rule depends on this partial unique index.
ACTIVE_JOB_INDEX = "uq_scrape_jobs_active_tenant"


def _validate_env() -> None:
    """
    Validate required environment variables at startup.

    Raises RuntimeError listing every problem so the operator can fix them
    in one restart cycle.
    """

    from app.config import get_market_intel_settings
    from db.config import load_env_files

    load_env_files()
    errors: list[str] = []

    if not any(
        os.getenv(name, "").strip()
        for name in ("DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL")
    ):
        errors.append(
            "No database URL configured. Set DATABASE_URL, CLOUD_DATABASE_URL "
            "or LOCAL_DATABASE_URL."
        )

    settings = get_market_intel_settings()
    if settings.use_cluster_jobs and not os.getenv("MARKET_INTEL_WORKER_IMAGE", "").strip():
        errors.append(
            "MARKET_INTEL_WORKER_IMAGE is not set but MARKET_INTEL_USE_CLUSTER_JOBS is true."
        )

    if errors:
        raise RuntimeError(
            "Startup validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        )


def _configure_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_database() -> None:
    """
    Confirm the database answers and the market-intel schema is migrated.

    Does NOT auto-migrate.
    """

    from sqlalchemy import inspect as sa_inspect
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    import db.models  # noqa: F401 registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise RuntimeError("Database unavailable.") from exc

    inspector = sa_inspect(get_engine())
    missing = sorted(set(Base.metadata.tables) - set(inspector.get_table_names()))
    if missing:
        logger.critical("Schema mismatch: tables absent from the database: %s", ", ".join(missing))
        raise RuntimeError(
            f"Schema mismatch: missing tables ({', '.join(missing)}). Run 'alembic upgrade head'."
        )

    index_names = {index["name"] for index in inspector.get_indexes("scrape_jobs")}
    if ACTIVE_JOB_INDEX not in index_names:
        raise RuntimeError(
            f"Schema mismatch: index {ACTIVE_JOB_INDEX} is missing. Run 'alembic upgrade head'."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Check the database and start the due-scrape scheduler; stop it on exit."""
    from app.config import get_market_intel_settings

    _check_database()
    logger.info("Database connectivity and schema confirmed")

    scheduler = None
    if get_market_intel_settings().scheduler_enabled:
        from app.scheduler.jobs import build_scheduler

        scheduler = build_scheduler()
        scheduler.start()
        logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=True)
            logger.info("Scheduler shut down")


def create_app() -> FastAPI:
    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Market Intelligence API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import market_intel_scrape_router

    application.include_router(market_intel_scrape_router)

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
