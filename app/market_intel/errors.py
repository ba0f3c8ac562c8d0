"""
Exception taxonomy for market-intelligence scraping.
"""

from __future__ import annotations

import uuid


class MarketIntelError(Exception):
    """Base exception for market-intelligence orchestration failures."""


class ScrapeConfigurationError(MarketIntelError):
    """Raised when a tenant cannot start a scrape because of its configuration."""


class ActiveScrapeJobError(MarketIntelError):
    """Raised when a tenant already has a pending or running scrape job."""

    def __init__(self, job_id: uuid.UUID | None) -> None:
        super().__init__("A scrape is already in progress")
        self.job_id = job_id


class ScrapeJobNotFoundError(MarketIntelError):
    """Raised when a scrape job id does not resolve for the tenant."""

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__(f"Scrape job not found: {job_id}")
        self.job_id = job_id


class JobNotCancellableError(MarketIntelError):
    """Raised when cancelling a job that already reached a terminal state."""

    def __init__(self, job_id: uuid.UUID, status: str) -> None:
        super().__init__(f"Scrape job {job_id} is not cancellable (status={status})")
        self.job_id = job_id
        self.status = status


class InvalidJobTransitionError(MarketIntelError):
    """Raised when a lifecycle transition is not allowed by the job state machine."""


class PlatformError(MarketIntelError):
    """Base class for errors isolated to one platform pass."""


class UnknownPlatformError(PlatformError):
    def __init__(self, platform_id: str) -> None:
        super().__init__(f"Unknown platform: {platform_id}")
        self.platform_id = platform_id


class FetchFailedError(PlatformError):
    def __init__(self, platform_id: str, reason: str) -> None:
        super().__init__(f"Fetch failed for {platform_id}: {reason}")
        self.platform_id = platform_id
        self.reason = reason


class ClusterSubmissionError(MarketIntelError):
    """Raised when the external job cluster rejects a scrape submission."""


class PersistenceUnavailableError(MarketIntelError):
    """Raised when the record store cannot be reached at all."""
