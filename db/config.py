"""
db/config.py

Database URL resolution shared by the scrape API, the scheduler, cluster
worker pods and Alembic migrations.

The API and scheduler read `.env` files in local development; worker pods get
their URL from the secret the job manifest mounts as environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path

_CLOUD_LIKE_ENVIRONMENTS = {"prod", "production", "staging", "cloud"}


def load_env_files() -> None:
    """
    Load KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten, so values
    injected into a cluster worker pod always win.
    """

    project_root = Path(__file__).resolve().parents[1]
    for filename in (".env", ".env.local"):
        env_path = project_root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


def normalize_postgres_url(url: str) -> str:
    """
    Normalize postgres URLs to SQLAlchemy's psycopg driver form.
    """

    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def is_cloud_environment() -> bool:
    return os.getenv("ENVIRONMENT", "local").strip().lower() in _CLOUD_LIKE_ENVIRONMENTS


def resolve_database_url() -> str:
    """
    Resolve the URL of the database holding scrape jobs, listings, run logs
    and tenant scrape configs.

    Priority:
    1) DATABASE_URL
    2) CLOUD_DATABASE_URL when ENVIRONMENT is cloud-like
    3) LOCAL_DATABASE_URL
    """

    load_env_files()

    direct_url = os.getenv("DATABASE_URL")
    if direct_url:
        return normalize_postgres_url(direct_url)

    cloud_url = os.getenv("CLOUD_DATABASE_URL")
    if is_cloud_environment() and cloud_url:
        return normalize_postgres_url(cloud_url)

    local_url = os.getenv("LOCAL_DATABASE_URL")
    if local_url:
        return normalize_postgres_url(local_url)

    raise RuntimeError(
        "No market-intelligence database URL configured. Set DATABASE_URL, or "
        "configure LOCAL_DATABASE_URL / CLOUD_DATABASE_URL."
    )
