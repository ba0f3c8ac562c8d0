"""
Fetch capability shared by all listing platforms.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import urlencode, urljoin

import requests
from bs4 import BeautifulSoup, Tag

from app.config import FetchSettings
from app.domain.market_intel import RawListing, ScrapeFilters
from app.market_intel.errors import FetchFailedError
from app.market_intel.logging_utils import log_event
from app.market_intel.rate_limiter import DomainRateLimiter
from app.market_intel.robots import RobotsPolicyManager

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_IMAGE_SKIP_MARKERS = ("logo", "avatar", "placeholder")


@dataclass(frozen=True)
class PlatformSpec:
    """
    Static description of one listing platform.
    """

    id: str
    name: str
    base_url: str
    search_path: str
    pagination_param: str = "page"
    requests_per_minute: int = 15
    max_pages: int = 50
    property_type_aliases: dict[str, str] = field(default_factory=dict)
    requires_javascript: bool = False


@dataclass(frozen=True)
class FetchResult:
    listings: tuple[RawListing, ...]
    pages_fetched: int
    complete: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class FetchContext:
    """
    Shared HTTP plumbing handed to every fetcher built for one run.
    """

    session: requests.Session
    settings: FetchSettings
    robots_policy: RobotsPolicyManager
    rate_limiter: DomainRateLimiter


class PlatformFetcher(ABC):
    """
    Paginated, compliant listing fetch for one platform.

    Subclasses describe URLs and markup; paging, retries, robots.txt and
    pacing live here.
    """

    card_selector: str = ""
    next_page_selector: str = 'a[rel="next"]'
    empty_state_selector: str = ""

    def __init__(self, *, spec: PlatformSpec, context: FetchContext) -> None:
        self.spec = spec
        self.context = context
        self.settings = context.settings
        self.request_headers = {
            "User-Agent": context.settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": context.settings.accept_language,
        }

    def fetch(self, filters: ScrapeFilters, page_cap: int) -> FetchResult:
        """
        Fetch up to `page_cap` result pages.

        Raises FetchFailedError if the first page cannot be fetched. Later page
        failures return what was collected with ``complete=False``.
        """

        max_pages = max(1, min(page_cap, self.spec.max_pages))
        listings: list[RawListing] = []
        seen_ids: set[str] = set()
        errors: list[str] = []
        pages_fetched = 0
        complete = True

        for page in range(1, max_pages + 1):
            url = self.build_page_url(filters, page)
            try:
                html = self._get_page(url)
            except (requests.RequestException, FetchFailedError) as exc:
                reason = exc.reason if isinstance(exc, FetchFailedError) else str(exc)
                if pages_fetched == 0:
                    raise FetchFailedError(self.spec.id, reason) from exc
                complete = False
                errors.append(f"page={page} error={reason}")
                log_event(
                    logger,
                    logging.WARNING,
                    "platform_page_failed",
                    platform=self.spec.id,
                    page=page,
                    url=url,
                    error=reason,
                )
                break

            pages_fetched += 1
            soup = BeautifulSoup(html, "html.parser")
            page_listings, page_errors = self.parse_page(soup, filters=filters)
            errors.extend(page_errors)

            fresh: list[RawListing] = []
            for item in page_listings:
                if item.source_listing_id not in seen_ids:
                    seen_ids.add(item.source_listing_id)
                    fresh.append(item)
            log_event(
                logger,
                logging.INFO,
                "platform_page_fetched",
                platform=self.spec.id,
                page=page,
                parsed=len(page_listings),
                new=len(fresh),
            )
            if not fresh:
                break

            listings.extend(item for item in fresh if filters.accepts_price(item.price))

            if not self.has_next_page(soup):
                break

        return FetchResult(
            listings=tuple(listings),
            pages_fetched=pages_fetched,
            complete=complete,
            errors=tuple(errors),
        )

    @abstractmethod
    def build_page_url(self, filters: ScrapeFilters, page: int) -> str:
        """
        Absolute search URL for a 1-based results page.
        """

    @abstractmethod
    def parse_card(self, card: Tag, *, filters: ScrapeFilters) -> RawListing | None:
        """
        Extract one listing from a result card, or None if it is not a listing.
        """

    def parse_page(
        self,
        soup: BeautifulSoup,
        *,
        filters: ScrapeFilters,
    ) -> tuple[list[RawListing], list[str]]:
        if self.empty_state_selector and soup.select_one(self.empty_state_selector):
            return [], []

        listings: list[RawListing] = []
        errors: list[str] = []
        for card in self.find_cards(soup):
            try:
                parsed = self.parse_card(card, filters=filters)
            except (ValueError, TypeError, AttributeError) as exc:
                errors.append(f"Unparseable listing card: {exc}")
                continue
            if parsed is not None:
                listings.append(parsed)
        return listings, errors

    def find_cards(self, soup: BeautifulSoup) -> list[Tag]:
        return list(soup.select(self.card_selector)) if self.card_selector else []

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        return soup.select_one(self.next_page_selector) is not None

    # -- helpers for subclasses ------------------------------------------------

    def search_url(self, path: str, params: dict[str, object]) -> str:
        query = urlencode({key: value for key, value in params.items() if value not in (None, "")})
        url = f"{self.spec.base_url}{path}"
        return f"{url}?{query}" if query else url

    def absolute_url(self, href: str) -> str:
        return urljoin(f"{self.spec.base_url}/", href)

    @staticmethod
    def select_text(node: Tag, selector: str) -> str | None:
        found = node.select_one(selector)
        if found is None:
            return None
        text = found.get_text(" ", strip=True)
        return text or None

    @staticmethod
    def match_id(pattern: re.Pattern[str], href: str | None) -> str | None:
        if not href:
            return None
        match = pattern.search(href)
        if not match:
            return None
        return next((group for group in match.groups() if group), None)

    def collect_images(self, nodes: Iterable[Tag]) -> tuple[str, ...]:
        images: list[str] = []
        for node in nodes:
            src = node.get("src") or node.get("data-src")
            if not isinstance(src, str) or not src or src.startswith("data:"):
                continue
            if any(marker in src.lower() for marker in _IMAGE_SKIP_MARKERS):
                continue
            absolute = self.absolute_url(src)
            if absolute not in images:
                images.append(absolute)
        return tuple(images)

    # -- HTTP ----------------------------------------------------------------

    def _get_page(self, url: str) -> str:
        user_agent = self.settings.user_agent
        robots = self.context.robots_policy
        if not robots.can_fetch(url=url, user_agent=user_agent):
            raise FetchFailedError(self.spec.id, f"Blocked by robots.txt url={url}")

        self.context.rate_limiter.wait(
            url=url,
            requests_per_minute=self.spec.requests_per_minute,
            crawl_delay_seconds=robots.crawl_delay(url=url, user_agent=user_agent),
        )
        return self._request_with_retry(url).text

    def _request_with_retry(self, url: str) -> requests.Response:
        last_error: Exception | None = None

        for attempt in range(self.settings.max_retries + 1):
            try:
                response = self.context.session.get(
                    url,
                    headers=self.request_headers,
                    timeout=self.settings.timeout_seconds,
                    allow_redirects=True,
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable status={response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except (requests.Timeout, requests.ConnectionError, requests.HTTPError) as exc:
                last_error = exc
                if isinstance(exc, requests.HTTPError):
                    status_code = exc.response.status_code if exc.response is not None else None
                    if status_code not in RETRYABLE_STATUS_CODES:
                        raise

            if attempt >= self.settings.max_retries:
                break

            backoff_seconds = self.settings.backoff_initial_seconds * (
                self.settings.backoff_multiplier**attempt
            )
            log_event(
                logger,
                logging.INFO,
                "platform_request_retry",
                platform=self.spec.id,
                url=url,
                attempt=attempt + 1,
                backoff_seconds=backoff_seconds,
                error=str(last_error),
            )
            time.sleep(backoff_seconds)

        raise FetchFailedError(self.spec.id, f"{url} failed after retries: {last_error}")


def area_from_location(location: str | None) -> str | None:
    """First segment of "Area, City" style location labels."""
    if not location:
        return None
    head = re.split(r"[,\-–]", location, maxsplit=1)[0].strip()
    return head or None
