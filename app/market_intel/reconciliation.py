"""
Reconciliation of freshly observed listings against stored state.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime

from app.domain.market_intel import CanonicalListing, StoredListingState, UpsertResult
from app.market_intel.logging_utils import log_event
from app.market_intel.storage.base import ListingStore
from db.models.competitor_listing import PriceChangeType

logger = logging.getLogger(__name__)


def classify_observation(
    stored: StoredListingState | None,
    listing: CanonicalListing,
) -> UpsertResult:
    """
    Decide whether an observation is new and whether it changes the price.

    A missing new price never counts as a change.
    """

    if stored is None:
        return UpsertResult(is_new=True, price_changed=False)
    price_changed = listing.price is not None and listing.price != stored.price
    return UpsertResult(is_new=False, price_changed=price_changed)


def price_change_type(previous: int | None, current: int | None) -> str | None:
    """
    Price history label for a transition, or None when nothing is recorded.
    """

    if current is None:
        return None
    if previous is None:
        return PriceChangeType.INITIAL
    if current > previous:
        return PriceChangeType.INCREASE
    if current < previous:
        return PriceChangeType.DECREASE
    return None


class ReconciliationEngine:
    """
    Keeps the canonical listing set in step with what platforms currently show.
    """

    def __init__(self, store: ListingStore) -> None:
        self._store = store

    def upsert_listing(self, listing: CanonicalListing) -> UpsertResult:
        if not listing.source_listing_id:
            raise ValueError("Listing is missing its source listing id.")
        if not listing.tenant_id or not listing.source_platform:
            raise ValueError("Listing is missing tenant or platform.")
        return self._store.upsert_listing(listing)

    def deactivate_stale(
        self,
        *,
        tenant_id: str,
        platform: str,
        seen_ids: Collection[str],
        observed_at: datetime,
    ) -> int:
        """
        Deactivate listings absent from this pass.

        Callers only pass the ids of a complete pass; an empty set means the
        platform no longer shows any of this tenant's listings.
        """

        deactivated = self._store.deactivate_missing(
            tenant_id=tenant_id,
            platform=platform,
            seen_ids=set(seen_ids),
            observed_at=observed_at,
        )
        log_event(
            logger,
            logging.INFO,
            "listings_deactivated",
            tenant_id=tenant_id,
            platform=platform,
            seen=len(seen_ids),
            deactivated=deactivated,
        )
        return deactivated
