"""
Registry of listing platforms and factory for their fetchers.
"""

from __future__ import annotations

from collections.abc import Mapping

from app.market_intel.errors import UnknownPlatformError
from app.market_intel.platforms.base import FetchContext, PlatformFetcher, PlatformSpec
from app.market_intel.platforms.fetchers import SpitogatosFetcher, TospitimouFetcher, XeGrFetcher

GREEK_PROPERTY_TYPES: dict[str, str] = {
    "διαμέρισμα": "APARTMENT",
    "διαμερισμα": "APARTMENT",
    "μονοκατοικία": "HOUSE",
    "μονοκατοικια": "HOUSE",
    "μεζονέτα": "MAISONETTE",
    "μεζονετα": "MAISONETTE",
    "στούντιο": "STUDIO",
    "στουντιο": "STUDIO",
    "loft": "LOFT",
    "ρετιρέ": "PENTHOUSE",
    "ρετιρε": "PENTHOUSE",
    "βίλα": "VILLA",
    "βιλα": "VILLA",
    "οικόπεδο": "LAND",
    "οικοπεδο": "LAND",
    "επαγγελματικό": "COMMERCIAL",
    "επαγγελματικο": "COMMERCIAL",
    "αποθήκη": "WAREHOUSE",
    "αποθηκη": "WAREHOUSE",
    "parking": "PARKING",
    "πάρκινγκ": "PARKING",
    "παρκινγκ": "PARKING",
}

ENGLISH_PROPERTY_TYPES: dict[str, str] = {
    "apartment": "APARTMENT",
    "flat": "APARTMENT",
    "detached house": "HOUSE",
    "house": "HOUSE",
    "maisonette": "MAISONETTE",
    "studio": "STUDIO",
    "penthouse": "PENTHOUSE",
    "villa": "VILLA",
    "land": "LAND",
    "plot": "LAND",
    "commercial": "COMMERCIAL",
    "store": "COMMERCIAL",
    "warehouse": "WAREHOUSE",
}

SPITOGATOS = PlatformSpec(
    id="spitogatos",
    name="Spitogatos.gr",
    base_url="https://www.spitogatos.gr",
    search_path="/pwlisi/katoikies",
    requests_per_minute=15,
    property_type_aliases={
        **GREEK_PROPERTY_TYPES,
        **ENGLISH_PROPERTY_TYPES,
        "γη": "LAND",
        "κατάστημα": "COMMERCIAL",
        "καταστημα": "COMMERCIAL",
        "θέση στάθμευσης": "PARKING",
    },
    requires_javascript=True,
)

XE_GR = PlatformSpec(
    id="xe_gr",
    name="XE.gr",
    base_url="https://www.xe.gr",
    search_path="/en/property/r/property-for-sale",
    requests_per_minute=20,
    property_type_aliases={**GREEK_PROPERTY_TYPES, **ENGLISH_PROPERTY_TYPES},
)

TOSPITIMOU = PlatformSpec(
    id="tospitimou",
    name="Tospitimou.gr",
    base_url="https://en.tospitimou.gr",
    search_path="/property/for-sale/houses",
    pagination_param="p",
    requests_per_minute=25,
    property_type_aliases={**GREEK_PROPERTY_TYPES, **ENGLISH_PROPERTY_TYPES},
)


class PlatformRegistry:
    """
    Maps platform identifiers to their spec and fetcher class.
    """

    def __init__(
        self,
        registrations: Mapping[str, tuple[PlatformSpec, type[PlatformFetcher]]] | None = None,
    ) -> None:
        builtins: dict[str, tuple[PlatformSpec, type[PlatformFetcher]]] = {
            SPITOGATOS.id: (SPITOGATOS, SpitogatosFetcher),
            XE_GR.id: (XE_GR, XeGrFetcher),
            TOSPITIMOU.id: (TOSPITIMOU, TospitimouFetcher),
        }
        if registrations:
            builtins.update(registrations)
        self._registrations = builtins

    def register(self, *, spec: PlatformSpec, fetcher_class: type[PlatformFetcher]) -> None:
        self._registrations[spec.id] = (spec, fetcher_class)

    def get_spec(self, platform_id: str) -> PlatformSpec:
        return self._resolve(platform_id)[0]

    def create_fetcher(self, platform_id: str, *, context: FetchContext) -> PlatformFetcher:
        spec, fetcher_class = self._resolve(platform_id)
        return fetcher_class(spec=spec, context=context)

    def is_known(self, platform_id: str) -> bool:
        return platform_id in self._registrations

    def platform_ids(self) -> list[str]:
        return list(self._registrations)

    def display_names(self) -> dict[str, str]:
        return {platform_id: spec.name for platform_id, (spec, _) in self._registrations.items()}

    def property_type_aliases(self) -> dict[str, dict[str, str]]:
        return {
            platform_id: dict(spec.property_type_aliases)
            for platform_id, (spec, _) in self._registrations.items()
        }

    def _resolve(self, platform_id: str) -> tuple[PlatformSpec, type[PlatformFetcher]]:
        resolved = self._registrations.get(platform_id)
        if resolved is None:
            raise UnknownPlatformError(platform_id)
        return resolved
