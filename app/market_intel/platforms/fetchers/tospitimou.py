"""
Tospitimou.gr search result fetcher (English subdomain).
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

from app.domain.market_intel import RawListing, ScrapeFilters
from app.market_intel.normalization import parse_int, parse_price, parse_size
from app.market_intel.platforms.base import PlatformFetcher, area_from_location

_ROW_ID_RE = re.compile(r"result-row_(\d+)")
_PROPERTY_ID_RE = re.compile(r"/property/(\d+)")
_TYPE_FROM_URL_RE = re.compile(r"/(?:sale|rent)-([a-z]+(?:-[a-z]+)?)-")
_LOCATION_FROM_URL_RE = re.compile(r"/(?:sale|rent)-[^/]+?-([A-Z][^/]*)/property/")
_SIZE_TEXT_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:m²|m2|sq\.?\s?m)", re.IGNORECASE)
_FLOOR_TEXT_RE = re.compile(r"(\d+)(?:st|nd|rd|th)\s*floor|ground\s*floor", re.IGNORECASE)

DEFAULT_AREA_SEGMENT = "/Athens-Center/area-ids_%5B100%5D,category_residential"

AREA_IDS = {
    "athens": "100",
    "athens-center": "100",
    "αθήνα": "100",
    "kolonaki": "100",
    "κολωνάκι": "100",
    "athens-north": "101",
    "kifisia": "101",
    "κηφισιά": "101",
    "athens-south": "102",
    "glyfada": "102",
    "γλυφάδα": "102",
    "athens-west": "103",
    "athens-east": "104",
    "piraeus": "105",
    "thessaloniki": "108",
    "θεσσαλονίκη": "108",
}


class TospitimouFetcher(PlatformFetcher):
    card_selector = '.search-result[id^="result-row_"], [data-targeturl*="/property/"]'
    next_page_selector = 'a[rel="next"], .pagination a.next'
    empty_state_selector = ".no-results, .empty-state, .noListings"

    def build_page_url(self, filters: ScrapeFilters, page: int) -> str:
        transaction = "to-rent" if filters.transaction_type == "rent" else "for-sale"
        path = f"/property/{transaction}/houses"
        locations = filters.locations
        if locations:
            path += _area_segment(locations[0])
        else:
            path += DEFAULT_AREA_SEGMENT
        return self.search_url(
            path,
            {
                "price_from": filters.min_price,
                "price_to": filters.max_price,
                self.spec.pagination_param: page if page > 1 else None,
            },
        )

    def find_cards(self, soup: BeautifulSoup) -> list[Tag]:
        cards = super().find_cards(soup)
        # Rows carry both selectors; keep outermost matches only.
        card_ids = {id(card) for card in cards}
        return [card for card in cards if not any(id(parent) in card_ids for parent in card.parents)]

    def parse_card(self, card: Tag, *, filters: ScrapeFilters) -> RawListing | None:
        target = card.get("data-targeturl")
        link = card.select_one('a[href*="/property/"]')
        href = target if isinstance(target, str) and target else None
        if href is None and link is not None:
            href = str(link.get("href") or "") or None

        listing_id = self.match_id(_ROW_ID_RE, str(card.get("id") or "")) or self.match_id(
            _PROPERTY_ID_RE,
            href,
        )
        if listing_id is None or href is None:
            return None

        text = card.get_text(" ", strip=True)
        price_text = self.select_text(card, ".priceArea, [class*='price']")
        size_match = _SIZE_TEXT_RE.search(text)
        floor_match = _FLOOR_TEXT_RE.search(text)
        type_match = _TYPE_FROM_URL_RE.search(href)
        location_match = _LOCATION_FROM_URL_RE.search(href)
        location = self.select_text(card, "[class*='location'], [class*='address']")
        if location is None and location_match:
            location = location_match.group(1).replace("-", " ")
        is_rental = "/month" in text or "rent-" in href

        return RawListing(
            source_listing_id=listing_id,
            source_url=self.absolute_url(href),
            title=self.select_text(card, ".searchResultsH2 a, h2 a, h2, [class*='title']"),
            price=parse_price(price_text.split("/")[0] if price_text else None),
            price_text=price_text,
            property_type=type_match.group(1).replace("-", " ") if type_match else None,
            transaction_type="rent" if is_rental else filters.transaction_type,
            address=location,
            area=area_from_location(location),
            size_sqm=parse_size(size_match.group(0)) if size_match else None,
            bedrooms=parse_int(self.select_text(card, "[class*='bedroom']")),
            bathrooms=parse_int(self.select_text(card, "[class*='bathroom']")),
            floor=(floor_match.group(1) or "0") if floor_match else None,
            agency_name=self.select_text(card, "[class*='agent'], [class*='agency']"),
            agency_phone=self.select_text(card, "a[href^='tel:'], [class*='phone']"),
            images=self.collect_images(card.select("img")),
            raw_data={"priceText": price_text, "location": location, "href": href},
        )


def _area_segment(area: str) -> str:
    slug = "-".join(area.strip().lower().split())
    area_id = AREA_IDS.get(slug) or AREA_IDS.get(area.strip().lower())
    title = "-".join(word[:1].upper() + word[1:] for word in re.split(r"[\s-]+", slug) if word)
    if area_id:
        return f"/{title}/area-ids_%5B{area_id}%5D,category_residential"
    return f"/{title}"
