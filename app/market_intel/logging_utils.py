"""
Structured logging helpers for market-intelligence scrape workflows.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.

    ``None`` fields are dropped so job/platform context can be passed
    unconditionally.
    """

    payload = {"event": event, **{key: value for key, value in fields.items() if value is not None}}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True, ensure_ascii=False))


def truncate_error(exc: BaseException, *, limit: int = 2000) -> str:
    """
    Render an exception as ``Type: message`` bounded to ``limit`` characters.
    """

    message = f"{type(exc).__name__}: {exc}"
    return message[:limit]
