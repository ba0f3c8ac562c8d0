"""
Spitogatos.gr search result fetcher.
"""

from __future__ import annotations

import re

from bs4 import Tag

from app.domain.market_intel import RawListing, ScrapeFilters
from app.market_intel.normalization import parse_int, parse_price, parse_size
from app.market_intel.platforms.base import PlatformFetcher, area_from_location

_LISTING_ID_RE = re.compile(r"/aggelies/(\d+)|/property/(\d+)")

RENT_SEARCH_PATH = "/enoikiasi/katoikies"


class SpitogatosFetcher(PlatformFetcher):
    card_selector = (
        '[data-testid="property-card"], article[class*="PropertyCard"], '
        'div[class*="ResultItem"], .property-card'
    )
    next_page_selector = '[data-testid="next-page"], a[rel="next"], button[aria-label="Επόμενη"]'
    empty_state_selector = '[data-testid="empty-state"], [class*="EmptyResults"], [class*="NoResults"]'

    def build_page_url(self, filters: ScrapeFilters, page: int) -> str:
        path = RENT_SEARCH_PATH if filters.transaction_type == "rent" else self.spec.search_path
        locations = filters.locations
        return self.search_url(
            path,
            {
                "price_from": filters.min_price,
                "price_to": filters.max_price,
                "geo_area_txt": locations[0] if locations else None,
                self.spec.pagination_param: page if page > 1 else None,
                "sort": "date",
                "order": "desc",
            },
        )

    def parse_card(self, card: Tag, *, filters: ScrapeFilters) -> RawListing | None:
        link = card.select_one('a[href*="/aggelies/"], a[href*="/en/property/"]')
        href = link.get("href") if link is not None else None
        listing_id = self.match_id(_LISTING_ID_RE, href if isinstance(href, str) else None)
        if listing_id is None:
            return None

        price_text = self.select_text(card, '[data-testid="price"], [class*="Price"], span[class*="price"]')
        size_text = self.select_text(card, '[data-testid="size"], [class*="Size"]')
        location = self.select_text(card, '[data-testid="location"], [class*="Location"], [class*="Area"]')
        phone_link = card.select_one('a[href^="tel:"]')
        phone = self.select_text(card, '[data-testid="phone"], [class*="Phone"]')
        if phone is None and phone_link is not None:
            phone = str(phone_link.get("href", "")).removeprefix("tel:") or None

        return RawListing(
            source_listing_id=listing_id,
            source_url=self.absolute_url(str(href)),
            title=self.select_text(card, '[data-testid="title"], [class*="Title"], h2'),
            price=parse_price(price_text),
            price_text=price_text,
            property_type=self.select_text(card, '[data-testid="property-type"], [class*="PropertyType"]'),
            transaction_type=filters.transaction_type,
            address=location,
            area=area_from_location(location),
            size_sqm=parse_size(size_text),
            bedrooms=parse_int(self.select_text(card, '[data-testid="bedrooms"], [class*="Bedroom"]')),
            bathrooms=parse_int(self.select_text(card, '[data-testid="bathrooms"], [class*="Bathroom"]')),
            agency_name=self.select_text(card, '[data-testid="agency"], [class*="Agency"], [class*="Realtor"]'),
            agency_phone=phone,
            images=self.collect_images(card.select("img")),
            raw_data={"priceText": price_text, "sizeText": size_text, "location": location},
        )
