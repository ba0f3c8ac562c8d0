"""
Per-domain request pacing for platform fetchers.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from urllib.parse import urlparse


class DomainRateLimiter:
    """
    Enforces a minimum interval between requests to the same host.

    Platforms publish their budget as requests per minute; robots.txt
    crawl-delay wins when it is stricter.
    """

    def __init__(
        self,
        *,
        default_rate_limit_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._default_rate_limit_per_second = max(0.01, default_rate_limit_per_second)
        self._clock = clock
        self._sleep = sleep
        self._last_request_by_domain: dict[str, float] = {}
        self._lock = threading.Lock()

    def wait(
        self,
        *,
        url: str,
        requests_per_minute: int | None = None,
        crawl_delay_seconds: float | None = None,
    ) -> float:
        """
        Block until `url` may be requested and return the seconds slept.
        """

        parsed = urlparse(url)
        domain = parsed.netloc.lower() or parsed.path.lower()
        if not domain:
            return 0.0

        if requests_per_minute:
            min_interval = 60.0 / max(1, requests_per_minute)
        else:
            min_interval = 1.0 / self._default_rate_limit_per_second
        if crawl_delay_seconds is not None:
            min_interval = max(min_interval, max(0.0, crawl_delay_seconds))

        with self._lock:
            last_time = self._last_request_by_domain.get(domain)
            wait_seconds = 0.0
            if last_time is not None:
                wait_seconds = max(0.0, min_interval - (self._clock() - last_time))
            if wait_seconds > 0:
                self._sleep(wait_seconds)
            self._last_request_by_domain[domain] = self._clock()
        return wait_seconds
