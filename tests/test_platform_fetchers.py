"""
tests/test_platform_fetchers.py

Pytest tests for the built-in platform fetchers.

Coverage
--------
- Card extraction per platform (HTML cards and XE JSON-LD)
- JSON-LD values coerced to text before normalization
- Pagination stop conditions: no next link, nothing new, empty state
- First-page failure raises; later-page failure returns partial results
- Price filter applied to fetched cards
- robots.txt disallow blocks the fetch
"""

from __future__ import annotations

import pytest

from app.domain.market_intel import ScrapeFilters
from app.market_intel.errors import FetchFailedError
from app.market_intel.normalization import ListingNormalizer
from app.market_intel.platforms.registry import PlatformRegistry
from conftest import OBSERVED_AT, FakeHTTPSession, FakeResponse, build_fetch_context

FILTERS = ScrapeFilters(areas=("Kolonaki",))


def _spitogatos_card(listing_id: str, price: str = "€ 185.000") -> str:
    return f"""
    <div data-testid="property-card">
      <a href="/aggelies/{listing_id}"><h2 data-testid="title">Διαμέρισμα 85 τ.μ.</h2></a>
      <span data-testid="price">{price}</span>
      <span data-testid="size">85 τ.μ.</span>
      <span data-testid="location">Κολωνάκι, Αθήνα</span>
      <a href="tel:2101234567">Call</a>
      <img src="/img/{listing_id}.jpg"><img src="/static/logo.png">
    </div>
    """


def _page(*cards: str, has_next: bool = False) -> FakeResponse:
    next_link = '<a rel="next" href="?page=next">Next</a>' if has_next else ""
    return FakeResponse(200, f"<html><body>{''.join(cards)}{next_link}</body></html>")


def _fetcher(platform_id: str, session: FakeHTTPSession, **settings):
    registry = PlatformRegistry()
    return registry.create_fetcher(platform_id, context=build_fetch_context(session, **settings))


def _url(platform_id: str, page: int, filters: ScrapeFilters = FILTERS) -> str:
    return _fetcher(platform_id, FakeHTTPSession()).build_page_url(filters, page)


# ---------------------------------------------------------------------------
# Spitogatos
# ---------------------------------------------------------------------------


class TestSpitogatosFetcher:
    def test_page_url_carries_location_and_page(self) -> None:
        assert _url("spitogatos", 1) == (
            "https://www.spitogatos.gr/pwlisi/katoikies?geo_area_txt=Kolonaki&sort=date&order=desc"
        )
        assert "page=2" in _url("spitogatos", 2)
        assert "/enoikiasi/katoikies" in _url("spitogatos", 1, ScrapeFilters(transaction_types=("rent",)))

    def test_parses_card_fields(self) -> None:
        session = FakeHTTPSession({_url("spitogatos", 1): _page(_spitogatos_card("12345"))})

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=3)

        assert result.complete is True
        assert result.pages_fetched == 1
        [listing] = result.listings
        assert listing.source_listing_id == "12345"
        assert listing.source_url == "https://www.spitogatos.gr/aggelies/12345"
        assert listing.title == "Διαμέρισμα 85 τ.μ."
        assert listing.price == 185_000
        assert listing.size_sqm == 85
        assert listing.area == "Κολωνάκι"
        assert listing.agency_phone == "2101234567"
        assert listing.images == ("https://www.spitogatos.gr/img/12345.jpg",)

    def test_follows_next_link_until_absent(self) -> None:
        session = FakeHTTPSession(
            {
                _url("spitogatos", 1): _page(_spitogatos_card("1"), has_next=True),
                _url("spitogatos", 2): _page(_spitogatos_card("2")),
            }
        )

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=5)

        assert [item.source_listing_id for item in result.listings] == ["1", "2"]
        assert result.pages_fetched == 2
        assert _url("spitogatos", 3) not in session.requested

    def test_page_cap_limits_requests(self) -> None:
        session = FakeHTTPSession(
            {
                _url("spitogatos", 1): _page(_spitogatos_card("1"), has_next=True),
                _url("spitogatos", 2): _page(_spitogatos_card("2"), has_next=True),
            }
        )

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=1)

        assert result.pages_fetched == 1
        assert result.complete is True

    def test_repeated_page_stops_pagination(self) -> None:
        session = FakeHTTPSession(
            {
                _url("spitogatos", 1): _page(_spitogatos_card("1"), has_next=True),
                _url("spitogatos", 2): _page(_spitogatos_card("1"), has_next=True),
            }
        )

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=5)

        assert [item.source_listing_id for item in result.listings] == ["1"]
        assert result.pages_fetched == 2

    def test_empty_state_page(self) -> None:
        empty = FakeResponse(200, '<div data-testid="empty-state">Δεν βρέθηκαν αγγελίες</div>')
        session = FakeHTTPSession({_url("spitogatos", 1): empty})

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=5)

        assert result.listings == ()
        assert result.complete is True

    def test_cards_without_id_are_skipped(self) -> None:
        stray = '<div data-testid="property-card"><h2>Promoted</h2></div>'
        session = FakeHTTPSession({_url("spitogatos", 1): _page(stray, _spitogatos_card("7"))})

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=1)

        assert [item.source_listing_id for item in result.listings] == ["7"]
        assert result.errors == ()

    def test_price_filter_drops_out_of_range_cards(self) -> None:
        filters = ScrapeFilters(areas=("Kolonaki",), min_price=150_000)
        cards = (
            _spitogatos_card("cheap", price="€ 90.000"),
            _spitogatos_card("ok", price="€ 185.000"),
            _spitogatos_card("unpriced", price="Κατόπιν επικοινωνίας"),
        )
        session = FakeHTTPSession({_url("spitogatos", 1, filters): _page(*cards)})

        result = _fetcher("spitogatos", session).fetch(filters, page_cap=1)

        assert {item.source_listing_id for item in result.listings} == {"ok", "unpriced"}


# ---------------------------------------------------------------------------
# Failures and robots.txt
# ---------------------------------------------------------------------------


class TestFetchFailures:
    def test_first_page_failure_raises(self) -> None:
        session = FakeHTTPSession({_url("spitogatos", 1): FakeResponse(503)})

        with pytest.raises(FetchFailedError) as exc_info:
            _fetcher("spitogatos", session).fetch(FILTERS, page_cap=3)

        assert exc_info.value.platform_id == "spitogatos"

    def test_non_retryable_status_raises_on_first_page(self) -> None:
        session = FakeHTTPSession({_url("spitogatos", 1): FakeResponse(403)})

        with pytest.raises(FetchFailedError):
            _fetcher("spitogatos", session).fetch(FILTERS, page_cap=3)

    def test_later_page_failure_returns_partial_result(self) -> None:
        session = FakeHTTPSession(
            {
                _url("spitogatos", 1): _page(_spitogatos_card("1"), has_next=True),
                _url("spitogatos", 2): FakeResponse(500),
            }
        )

        result = _fetcher("spitogatos", session).fetch(FILTERS, page_cap=5)

        assert result.complete is False
        assert [item.source_listing_id for item in result.listings] == ["1"]
        assert any(error.startswith("page=2") for error in result.errors)

    def test_retry_recovers_from_transient_status(self) -> None:
        session = FakeHTTPSession(
            {_url("spitogatos", 1): [FakeResponse(502), _page(_spitogatos_card("1"))]}
        )

        result = _fetcher("spitogatos", session, max_retries=1).fetch(FILTERS, page_cap=1)

        assert [item.source_listing_id for item in result.listings] == ["1"]
        assert session.requested.count(_url("spitogatos", 1)) == 2

    def test_robots_disallow_blocks_fetch(self) -> None:
        session = FakeHTTPSession(
            {
                "https://www.spitogatos.gr/robots.txt": FakeResponse(200, "User-agent: *\nDisallow: /"),
                _url("spitogatos", 1): _page(_spitogatos_card("1")),
            }
        )

        with pytest.raises(FetchFailedError) as exc_info:
            _fetcher("spitogatos", session, respect_robots=True).fetch(FILTERS, page_cap=1)

        assert "robots.txt" in exc_info.value.reason
        assert _url("spitogatos", 1) not in session.requested

    def test_unreachable_robots_allows_by_default(self) -> None:
        session = FakeHTTPSession({_url("spitogatos", 1): _page(_spitogatos_card("1"))})

        result = _fetcher("spitogatos", session, respect_robots=True).fetch(FILTERS, page_cap=1)

        assert len(result.listings) == 1


# ---------------------------------------------------------------------------
# XE.gr
# ---------------------------------------------------------------------------

XE_JSON_LD = """
<script type="application/ld+json">
{"@type": "ItemList", "itemListElement": [
  {"@type": "ListItem", "item": {
    "@type": "Apartment",
    "url": "https://www.xe.gr/property/d/777",
    "name": "Apartment 70 m²",
    "offers": {"price": "210000"},
    "address": {"addressLocality": "Kolonaki", "postalCode": "10674"},
    "geo": {"latitude": "37.97", "longitude": "23.74"},
    "floorSize": {"value": 70},
    "numberOfRooms": 2,
    "image": "https://img.xe.gr/777.jpg"
  }},
  {"@type": "ListItem", "item": {"@type": "Organization", "url": "https://www.xe.gr/d/1"}}
]}
</script>
"""


class TestXeGrFetcher:
    def test_page_url_uses_property_type_segment(self) -> None:
        filters = ScrapeFilters(property_types=("APARTMENT",), transaction_types=("rent",))
        assert _url("xe_gr", 1, filters) == "https://www.xe.gr/en/property/r/apartment-to-rent"
        assert _url("xe_gr", 2) == "https://www.xe.gr/en/property/r/property-for-sale?page=2"

    def test_parses_json_ld(self) -> None:
        session = FakeHTTPSession({_url("xe_gr", 1): FakeResponse(200, f"<html>{XE_JSON_LD}</html>")})

        result = _fetcher("xe_gr", session).fetch(FILTERS, page_cap=1)

        [listing] = result.listings
        assert listing.source_listing_id == "777"
        assert listing.price == 210_000
        assert listing.size_sqm == 70
        assert listing.bedrooms == 2
        assert listing.postal_code == "10674"
        assert listing.latitude == pytest.approx(37.97)
        assert listing.images == ("https://img.xe.gr/777.jpg",)

    def test_json_ld_numbers_and_objects_coerced_to_text(self) -> None:
        script = """
        <script type="application/ld+json">
        {"@type": "Apartment", "url": "https://www.xe.gr/property/d/901",
         "name": 2024, "offers": {"price": 150000},
         "address": {"postalCode": 10674, "addressLocality": {"name": "Kolonaki"},
                     "streetAddress": true}}
        </script>
        """
        session = FakeHTTPSession({_url("xe_gr", 1): FakeResponse(200, f"<html>{script}</html>")})

        result = _fetcher("xe_gr", session).fetch(FILTERS, page_cap=1)

        [raw] = result.listings
        assert raw.postal_code == "10674"
        assert raw.title == "2024"
        assert raw.area is None
        assert raw.address is None

        listing = ListingNormalizer(property_type_aliases={}).normalize(
            raw,
            platform_id="xe_gr",
            tenant_id="org-1",
            observed_at=OBSERVED_AT,
        )
        assert listing.postal_code == "10674"
        assert listing.price == 150_000

    def test_falls_back_to_cards_without_json_ld(self) -> None:
        card = """
        <div data-property-id="888">
          <a href="/property/d/888"><h3>Maisonette</h3></a>
          <span class="price">€ 99.000</span>
          <span class="size">110 m²</span>
        </div>
        """
        session = FakeHTTPSession({_url("xe_gr", 1): FakeResponse(200, card)})

        result = _fetcher("xe_gr", session).fetch(FILTERS, page_cap=1)

        [listing] = result.listings
        assert listing.source_listing_id == "888"
        assert listing.source_url == "https://www.xe.gr/property/d/888"
        assert listing.price == 99_000
        assert listing.size_sqm == 110


# ---------------------------------------------------------------------------
# Tospitimou
# ---------------------------------------------------------------------------

TOSPITIMOU_ROW = """
<div class="search-result" id="result-row_4242">
  <h2><a href="/property/sale-apartment-Kolonaki/property/4242">Apartment 95 m²</a></h2>
  <div data-targeturl="/property/sale-apartment-Kolonaki/property/4242">
    <span class="priceArea">€ 250.000</span>
    <span>95 m² 3rd floor</span>
  </div>
</div>
"""


class TestTospitimouFetcher:
    def test_page_url_maps_known_area(self) -> None:
        assert _url("tospitimou", 2) == (
            "https://en.tospitimou.gr/property/for-sale/houses/Kolonaki"
            "/area-ids_%5B100%5D,category_residential?p=2"
        )

    def test_nested_matches_collapse_to_one_listing(self) -> None:
        session = FakeHTTPSession({_url("tospitimou", 1): FakeResponse(200, TOSPITIMOU_ROW)})

        result = _fetcher("tospitimou", session).fetch(FILTERS, page_cap=1)

        [listing] = result.listings
        assert listing.source_listing_id == "4242"
        assert listing.title == "Apartment 95 m²"
        assert listing.price == 250_000
        assert listing.size_sqm == 95
        assert listing.floor == "3"
        assert listing.property_type == "apartment"
        assert listing.area == "Kolonaki"
        assert listing.transaction_type == "sale"
