"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


@dataclass(frozen=True)
class FetchSettings:
    """
    Outbound HTTP behavior for platform fetchers.
    """

    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    accept_language: str = "el-GR,el;q=0.9,en-US;q=0.8,en;q=0.7"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_initial_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    default_rate_limit_per_second: float = 0.5
    respect_robots: bool = True
    allow_when_robots_unreachable: bool = True


@dataclass(frozen=True)
class ClusterSettings:
    """
    Kubernetes Job submission settings for the external execution substrate.
    """

    api_url: str = "https://kubernetes.default.svc"
    namespace: str = "market-intel-jobs"
    service_account_token: str | None = None
    worker_image: str = "market-intel-worker:latest"
    worker_secret: str = "market-intel-worker-env"
    ttl_seconds_after_finished: int = 3600
    active_deadline_seconds: int = 3600
    verify_tls: bool = True


@dataclass(frozen=True)
class MarketIntelSettings:
    """
    Runtime settings for scrape orchestration.
    """

    fetch: FetchSettings
    cluster: ClusterSettings
    use_cluster_jobs: bool = False
    progress_flush_interval: int = 5
    max_platform_errors: int = 20
    worker_threads: int = 2
    scheduler_interval_minutes: int = 15
    recent_jobs_limit: int = 5
    recent_logs_limit: int = 10
    scheduler_enabled: bool = True
    redis_url: str | None = None


@lru_cache(maxsize=1)
def get_market_intel_settings() -> MarketIntelSettings:
    """
    Return cached market-intelligence settings from environment variables.
    """

    defaults = FetchSettings()
    fetch = FetchSettings(
        user_agent=_get_str_env("MARKET_INTEL_USER_AGENT", defaults.user_agent),
        accept_language=_get_str_env("MARKET_INTEL_ACCEPT_LANGUAGE", defaults.accept_language),
        timeout_seconds=max(1.0, _get_float_env("MARKET_INTEL_TIMEOUT_SECONDS", defaults.timeout_seconds)),
        max_retries=max(0, _get_int_env("MARKET_INTEL_MAX_RETRIES", defaults.max_retries)),
        backoff_initial_seconds=max(
            0.1,
            _get_float_env("MARKET_INTEL_BACKOFF_INITIAL_SECONDS", defaults.backoff_initial_seconds),
        ),
        backoff_multiplier=max(
            1.0,
            _get_float_env("MARKET_INTEL_BACKOFF_MULTIPLIER", defaults.backoff_multiplier),
        ),
        default_rate_limit_per_second=max(
            0.01,
            _get_float_env("MARKET_INTEL_RATE_LIMIT_PER_SECOND", defaults.default_rate_limit_per_second),
        ),
        respect_robots=_get_bool_env("MARKET_INTEL_RESPECT_ROBOTS", defaults.respect_robots),
        allow_when_robots_unreachable=_get_bool_env(
            "MARKET_INTEL_ALLOW_WHEN_ROBOTS_UNREACHABLE",
            defaults.allow_when_robots_unreachable,
        ),
    )

    cluster_defaults = ClusterSettings()
    cluster = ClusterSettings(
        api_url=_get_str_env("K8S_API_URL", cluster_defaults.api_url).rstrip("/"),
        namespace=_get_str_env("K8S_NAMESPACE", cluster_defaults.namespace),
        service_account_token=_get_optional_str_env("K8S_SERVICE_ACCOUNT_TOKEN"),
        worker_image=_get_str_env("MARKET_INTEL_WORKER_IMAGE", cluster_defaults.worker_image),
        worker_secret=_get_str_env("MARKET_INTEL_WORKER_SECRET", cluster_defaults.worker_secret),
        ttl_seconds_after_finished=max(
            0,
            _get_int_env("MARKET_INTEL_WORKER_TTL_SECONDS", cluster_defaults.ttl_seconds_after_finished),
        ),
        active_deadline_seconds=max(
            60,
            _get_int_env("MARKET_INTEL_WORKER_DEADLINE_SECONDS", cluster_defaults.active_deadline_seconds),
        ),
        verify_tls=_get_bool_env("K8S_VERIFY_TLS", cluster_defaults.verify_tls),
    )

    return MarketIntelSettings(
        fetch=fetch,
        cluster=cluster,
        use_cluster_jobs=_get_bool_env("MARKET_INTEL_USE_CLUSTER_JOBS", False),
        progress_flush_interval=max(1, _get_int_env("MARKET_INTEL_PROGRESS_FLUSH_INTERVAL", 5)),
        max_platform_errors=max(1, _get_int_env("MARKET_INTEL_MAX_PLATFORM_ERRORS", 20)),
        worker_threads=max(1, _get_int_env("MARKET_INTEL_WORKER_THREADS", 2)),
        scheduler_interval_minutes=max(1, _get_int_env("MARKET_INTEL_SCHEDULER_INTERVAL_MINUTES", 15)),
        recent_jobs_limit=max(1, _get_int_env("MARKET_INTEL_RECENT_JOBS_LIMIT", 5)),
        recent_logs_limit=max(1, _get_int_env("MARKET_INTEL_RECENT_LOGS_LIMIT", 10)),
        scheduler_enabled=_get_bool_env("MARKET_INTEL_SCHEDULER_ENABLED", True),
        redis_url=_get_optional_str_env("REDIS_URL"),
    )
