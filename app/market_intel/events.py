"""
Best-effort real-time progress events over Redis pub/sub.

Subscribers listen on ``market-intel:{tenant}:scrape-progress``. Publishing
never raises: a dead broker must not fail the scrape that reports to it.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Protocol

import redis

from app.domain.market_intel import CurrentAction, ProgressDelta
from app.market_intel.logging_utils import log_event

logger = logging.getLogger(__name__)

CHANNEL_TEMPLATE = "market-intel:{tenant_id}:scrape-progress"


def progress_channel(tenant_id: str) -> str:
    return CHANNEL_TEMPLATE.format(tenant_id=tenant_id)


def build_progress_event(
    *,
    job_id: uuid.UUID,
    platform: str | None,
    status: str,
    delta: ProgressDelta | None,
    current_action: CurrentAction | None,
) -> dict[str, Any]:
    return {
        "jobId": str(job_id),
        "platform": platform,
        "status": status,
        "delta": (
            {
                "total": delta.total,
                "passed": delta.passed,
                "failed": delta.failed,
                "errors": list(delta.errors),
                "status": delta.status,
            }
            if delta is not None
            else None
        ),
        "currentAction": current_action.to_dict() if current_action else None,
    }


class ProgressSink(Protocol):
    def publish(self, tenant_id: str, event: dict[str, Any]) -> None: ...


class NullProgressSink:
    def publish(self, tenant_id: str, event: dict[str, Any]) -> None:
        return None


class RedisProgressPublisher:
    """
    Publishes progress events to a tenant-scoped Redis channel.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisProgressPublisher:
        return cls(redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2))

    def publish(self, tenant_id: str, event: dict[str, Any]) -> None:
        channel = progress_channel(tenant_id)
        try:
            self._client.publish(channel, json.dumps(event, default=str))
        except redis.RedisError as exc:
            log_event(
                logger,
                logging.WARNING,
                "progress_publish_failed",
                channel=channel,
                job_id=event.get("jobId"),
                error=str(exc),
            )


def build_progress_sink(redis_url: str | None) -> ProgressSink:
    if not redis_url:
        return NullProgressSink()
    return RedisProgressPublisher.from_url(redis_url)
