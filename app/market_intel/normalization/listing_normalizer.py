"""
Normalization of platform listings into the canonical listing shape.

Everything here is pure: the same raw listing, platform, tenant and
observation time always produce the same canonical listing.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime, timezone

from app.domain.market_intel import CanonicalListing, RawListing

OTHER_PROPERTY_TYPE = "OTHER"

TRANSACTION_TYPE_ALIASES: dict[str, str] = {
    "πώληση": "sale",
    "πωληση": "sale",
    "sale": "sale",
    "for sale": "sale",
    "αγορά": "sale",
    "αγορα": "sale",
    "buy": "sale",
    "ενοικίαση": "rent",
    "ενοικιαση": "rent",
    "rent": "rent",
    "rental": "rent",
    "for rent": "rent",
    "to rent": "rent",
    "ενοικιάζεται": "rent",
    "ενοικιαζεται": "rent",
}
RENTAL_KEYWORDS = ("ενοικ", "rent", "μισθ")

AREA_ALIASES: dict[str, str] = {
    "αθήνα": "Αθήνα",
    "αθηνα": "Αθήνα",
    "athens": "Αθήνα",
    "θεσσαλονίκη": "Θεσσαλονίκη",
    "θεσσαλονικη": "Θεσσαλονίκη",
    "thessaloniki": "Θεσσαλονίκη",
    "πειραιάς": "Πειραιάς",
    "πειραιας": "Πειραιάς",
    "piraeus": "Πειραιάς",
    "κολωνάκι": "Κολωνάκι",
    "κολωνακι": "Κολωνάκι",
    "kolonaki": "Κολωνάκι",
    "κηφισιά": "Κηφισιά",
    "κηφισια": "Κηφισιά",
    "kifisia": "Κηφισιά",
    "γλυφάδα": "Γλυφάδα",
    "γλυφαδα": "Γλυφάδα",
    "glyfada": "Γλυφάδα",
    "βούλα": "Βούλα",
    "βουλα": "Βούλα",
    "voula": "Βούλα",
    "μαρούσι": "Μαρούσι",
    "μαρουσι": "Μαρούσι",
    "marousi": "Μαρούσι",
}

FLOOR_ALIASES: dict[str, str] = {
    "ισόγειο": "0",
    "ισογειο": "0",
    "ground": "0",
    "ground floor": "0",
    "υπόγειο": "-1",
    "υπογειο": "-1",
    "basement": "-1",
    "ημιυπόγειο": "-0.5",
    "ημιυπογειο": "-0.5",
    "ημιισόγειο": "0.5",
    "ημιισογειο": "0.5",
}

_ORDINAL_FLOOR_RE = re.compile(r"^(\d+)ος$")
_DIGITS_RE = re.compile(r"(\d+)")
_PRICE_NUMBER_RE = re.compile(r"[\d.]+")
_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:τ\.?μ\.?|m²|m2|sqm)?", re.IGNORECASE)

# Column bounds of competitor_listings; values beyond them are clamped or dropped.
MAX_INT_COLUMN = 2_147_483_647
TEXT_LIMITS: dict[str, int] = {
    "source_listing_id": 255,
    "price_text": 100,
    "area": 100,
    "municipality": 100,
    "floor": 20,
    "agency_name": 255,
    "agency_phone": 50,
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_text(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit].rstrip() or None


def canonical_source_id(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    return value.strip()[: TEXT_LIMITS["source_listing_id"]]


def bounded_int(value: int | None) -> int | None:
    if value is None or value < 0 or value > MAX_INT_COLUMN:
        return None
    return value


def parse_price(text: str | None) -> int | None:
    """
    Parse a Greek-formatted price such as ``"€ 185.000"`` into whole euros.

    Dots are thousands separators and a comma marks decimals.
    """

    if not text:
        return None
    cleaned = re.sub(r"[€$£\s]", "", text).replace(".", "").replace(",", ".")
    match = _PRICE_NUMBER_RE.search(cleaned)
    if not match:
        return None
    try:
        return _round_half_up(float(match.group(0)))
    except ValueError:
        return None


def parse_size(text: str | None) -> int | None:
    if not text:
        return None
    match = _SIZE_RE.search(text)
    if not match:
        return None
    return _round_half_up(float(match.group(1).replace(",", ".")))


def parse_int(text: str | None) -> int | None:
    if not text:
        return None
    match = _DIGITS_RE.search(text)
    return int(match.group(1)) if match else None


def normalize_text(text: str | None) -> str | None:
    if text is None:
        return None
    collapsed = " ".join(text.split())
    return collapsed or None


def normalize_property_type(value: str | None, aliases: Mapping[str, str]) -> str | None:
    """
    Map a platform property label to a canonical type.

    Exact alias match first, then substring match in alias order, else OTHER.
    """

    if not value or not value.strip():
        return None
    label = value.strip().lower()
    if label in aliases:
        return aliases[label]
    for key, canonical in aliases.items():
        if key in label or label in key:
            return canonical
    return OTHER_PROPERTY_TYPE


def normalize_transaction_type(value: str | None) -> str:
    if not value:
        return "sale"
    label = value.strip().lower()
    if label in TRANSACTION_TYPE_ALIASES:
        return TRANSACTION_TYPE_ALIASES[label]
    if any(keyword in label for keyword in RENTAL_KEYWORDS):
        return "rent"
    return "sale"


def normalize_area(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    label = value.strip().lower()
    if label in AREA_ALIASES:
        return AREA_ALIASES[label]
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


def normalize_postal_code(value: str | None) -> str | None:
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    return digits if len(digits) == 5 else None


def normalize_floor(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    label = value.strip().lower()
    if label in FLOOR_ALIASES:
        return FLOOR_ALIASES[label]
    ordinal = _ORDINAL_FLOOR_RE.match(label)
    if ordinal:
        return ordinal.group(1)
    digits = _DIGITS_RE.search(label)
    if digits:
        return digits.group(1)
    return value.strip()


def normalize_phone(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = re.sub(r"[^\d+]", "", value)
    return cleaned if len(re.sub(r"\D", "", cleaned)) >= 10 else None


def price_per_sqm(price: int | None, size_sqm: int | None) -> int | None:
    if not price or not size_sqm or size_sqm <= 0:
        return None
    return _round_half_up(price / size_sqm)


class ListingNormalizer:
    """
    Convert platform listings into canonical listings for one tenant.
    """

    def __init__(self, *, property_type_aliases: Mapping[str, Mapping[str, str]]) -> None:
        self._property_type_aliases = property_type_aliases

    def normalize(
        self,
        raw: RawListing,
        *,
        platform_id: str,
        tenant_id: str,
        observed_at: datetime,
    ) -> CanonicalListing:
        source_id = canonical_source_id(raw.source_listing_id)
        if source_id is None:
            raise ValueError(f"Listing from {platform_id} has no source listing id.")
        if observed_at.tzinfo is None:
            observed_at = observed_at.replace(tzinfo=timezone.utc)

        price = bounded_int(raw.price if raw.price is not None else parse_price(raw.price_text))
        size_sqm = bounded_int(raw.size_sqm) if raw.size_sqm else None

        return CanonicalListing(
            tenant_id=tenant_id,
            source_platform=platform_id,
            source_listing_id=source_id,
            source_url=raw.source_url,
            last_seen_at=observed_at,
            title=normalize_text(raw.title),
            price=price,
            price_text=clamp_text(normalize_text(raw.price_text), TEXT_LIMITS["price_text"]),
            price_per_sqm=price_per_sqm(price, size_sqm),
            property_type=normalize_property_type(
                raw.property_type,
                self._property_type_aliases.get(platform_id, {}),
            ),
            transaction_type=normalize_transaction_type(raw.transaction_type),
            address=normalize_text(raw.address),
            area=clamp_text(normalize_area(raw.area), TEXT_LIMITS["area"]),
            municipality=clamp_text(normalize_text(raw.municipality), TEXT_LIMITS["municipality"]),
            postal_code=normalize_postal_code(raw.postal_code),
            latitude=raw.latitude,
            longitude=raw.longitude,
            size_sqm=size_sqm,
            bedrooms=bounded_int(raw.bedrooms),
            bathrooms=bounded_int(raw.bathrooms),
            floor=clamp_text(normalize_floor(raw.floor), TEXT_LIMITS["floor"]),
            year_built=bounded_int(raw.year_built),
            agency_name=clamp_text(normalize_text(raw.agency_name), TEXT_LIMITS["agency_name"]),
            agency_phone=clamp_text(normalize_phone(raw.agency_phone), TEXT_LIMITS["agency_phone"]),
            images=tuple(dict.fromkeys(image for image in raw.images if image)),
            listing_date=raw.listing_date,
            raw_data=dict(raw.raw_data),
        )
