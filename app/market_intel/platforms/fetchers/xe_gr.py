"""
XE.gr search result fetcher.

Result pages embed schema.org JSON-LD; card markup is only parsed when a
page carries none.
"""

from __future__ import annotations

import json
import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from app.domain.market_intel import RawListing, ScrapeFilters
from app.market_intel.normalization import parse_int, parse_price, parse_size
from app.market_intel.platforms.base import PlatformFetcher, area_from_location

_LISTING_ID_RE = re.compile(r"/property/d/(\d+)")
_JSON_LD_ID_RE = re.compile(r"/d/(\d+)|/details/(\d+)")
_JSON_LD_TYPES = {"Product", "Residence", "RealEstateListing", "Apartment", "House", "SingleFamilyResidence"}

PROPERTY_TYPE_SEGMENTS = {
    "APARTMENT": "apartment",
    "STUDIO": "apartment",
    "HOUSE": "detached-house",
    "VILLA": "detached-house",
    "MAISONETTE": "maisonette",
    "LAND": "plots-of-land",
    "COMMERCIAL": "commercial-property",
    "WAREHOUSE": "commercial-property",
    "PARKING": "parking-spaces",
}


class XeGrFetcher(PlatformFetcher):
    card_selector = (
        '[data-testid="property-card"], [data-property-id], '
        'article[class*="PropertyCard"], div[class*="ResultCard"]'
    )
    next_page_selector = 'a[rel="next"], [aria-label="Next"], [aria-label="Επόμενη"]'
    empty_state_selector = '[data-testid="empty-state"], [class*="EmptyState"], [class*="NoResults"]'

    def build_page_url(self, filters: ScrapeFilters, page: int) -> str:
        segment = "property"
        if len(filters.property_types) == 1:
            segment = PROPERTY_TYPE_SEGMENTS.get(filters.property_types[0].upper(), segment)
        transaction = "to-rent" if filters.transaction_type == "rent" else "for-sale"
        return self.search_url(
            f"/en/property/r/{segment}-{transaction}",
            {self.spec.pagination_param: page if page > 1 else None},
        )

    def parse_page(
        self,
        soup: BeautifulSoup,
        *,
        filters: ScrapeFilters,
    ) -> tuple[list[RawListing], list[str]]:
        structured = self._parse_json_ld(soup, filters=filters)
        if structured:
            return structured, []
        return super().parse_page(soup, filters=filters)

    def parse_card(self, card: Tag, *, filters: ScrapeFilters) -> RawListing | None:
        link = card.select_one('a[href*="/property/d/"]')
        href = link.get("href") if link is not None else None
        listing_id = card.get("data-property-id") or self.match_id(
            _LISTING_ID_RE,
            href if isinstance(href, str) else None,
        )
        if not listing_id or not isinstance(href, str):
            return None

        price_text = self.select_text(card, '[data-testid="price"], [class*="price"], [class*="Price"]')
        size_text = self.select_text(card, '[data-testid="size"], [class*="size"], [class*="Size"]')
        location = self.select_text(card, '[data-testid="location"], [class*="location"], [class*="Address"]')
        return RawListing(
            source_listing_id=str(listing_id),
            source_url=self.absolute_url(href),
            title=self.select_text(card, '[data-testid="title"], [class*="title"], h2, h3'),
            price=parse_price(price_text),
            price_text=price_text,
            property_type=self.select_text(card, '[data-testid="property-type"]'),
            transaction_type=filters.transaction_type,
            address=location,
            area=area_from_location(location),
            size_sqm=parse_size(size_text),
            bedrooms=parse_int(self.select_text(card, '[data-testid="bedrooms"], [class*="bedroom"]')),
            agency_name=self.select_text(card, '[data-testid="agency"], [class*="agency"]'),
            images=self.collect_images(card.select("img")),
            raw_data={"priceText": price_text, "sizeText": size_text, "location": location},
        )

    def _parse_json_ld(self, soup: BeautifulSoup, *, filters: ScrapeFilters) -> list[RawListing]:
        listings: list[RawListing] = []
        for script in soup.select('script[type="application/ld+json"]'):
            try:
                data = json.loads(script.string or script.get_text() or "")
            except json.JSONDecodeError:
                continue
            for item in _json_ld_items(data):
                listing = self._listing_from_json_ld(item, filters=filters)
                if listing is not None:
                    listings.append(listing)
        return listings

    def _listing_from_json_ld(self, item: dict[str, Any], *, filters: ScrapeFilters) -> RawListing | None:
        url = item.get("url")
        if not isinstance(url, str) or not url:
            return None
        listing_id = self.match_id(_JSON_LD_ID_RE, url)
        if listing_id is None:
            return None

        offers = item.get("offers") if isinstance(item.get("offers"), dict) else {}
        address = item.get("address") if isinstance(item.get("address"), dict) else {}
        geo = item.get("geo") if isinstance(item.get("geo"), dict) else {}
        floor_size = item.get("floorSize") if isinstance(item.get("floorSize"), dict) else {}
        images = item.get("image") or []
        if isinstance(images, str):
            images = [images]

        return RawListing(
            source_listing_id=listing_id,
            source_url=self.absolute_url(url),
            title=_to_str(item.get("name")),
            price=_to_int(offers.get("price")),
            price_text=str(offers["price"]) if offers.get("price") is not None else None,
            transaction_type=filters.transaction_type,
            address=_to_str(address.get("streetAddress")),
            area=_to_str(address.get("addressLocality")),
            municipality=_to_str(address.get("addressRegion")),
            postal_code=_to_str(address.get("postalCode")),
            latitude=_to_float(geo.get("latitude")),
            longitude=_to_float(geo.get("longitude")),
            size_sqm=_to_int(floor_size.get("value")),
            bedrooms=_to_int(item.get("numberOfRooms")),
            images=tuple(str(image) for image in images if image),
            raw_data=item,
        )


def _json_ld_items(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        candidates = data
    elif isinstance(data, dict) and data.get("@type") == "ItemList":
        candidates = [
            element.get("item", element) if isinstance(element, dict) else element
            for element in data.get("itemListElement") or []
        ]
    else:
        candidates = [data]
    return [
        item
        for item in candidates
        if isinstance(item, dict) and item.get("@type") in _JSON_LD_TYPES
    ]


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> str | None:
    # Numbers become strings; objects and booleans are dropped.
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    return None
