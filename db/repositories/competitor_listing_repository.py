"""
Repository for competitor listings and their price history.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from db.models.competitor_listing import (
    LISTING_IDENTITY_CONSTRAINT,
    CompetitorListing,
    ListingPriceHistory,
)


class CompetitorListingRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_for_update(
        self,
        *,
        tenant_id: str,
        source_platform: str,
        source_listing_id: str,
    ) -> CompetitorListing | None:
        stmt = (
            select(CompetitorListing)
            .where(
                CompetitorListing.tenant_id == tenant_id,
                CompetitorListing.source_platform == source_platform,
                CompetitorListing.source_listing_id == source_listing_id,
            )
            .with_for_update()
        )
        return self._session.scalars(stmt).first()

    def insert_if_absent(self, values: dict[str, Any]) -> uuid.UUID | None:
        """
        Insert a listing unless another writer already created the identity.

        Returns the new row id, or None when the insert lost the race.
        """

        stmt = (
            insert(CompetitorListing)
            .values(id=uuid.uuid4(), **values)
            .on_conflict_do_nothing(constraint=LISTING_IDENTITY_CONSTRAINT)
            .returning(CompetitorListing.id)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def apply_observation(self, listing: CompetitorListing, values: dict[str, Any]) -> None:
        for key, value in values.items():
            setattr(listing, key, value)
        listing.is_active = True
        self._session.flush()

    def add_price_history(
        self,
        *,
        tenant_id: str,
        listing_id: uuid.UUID,
        price: int,
        price_per_sqm: int | None,
        change_type: str,
        recorded_at: datetime,
    ) -> None:
        self._session.add(
            ListingPriceHistory(
                tenant_id=tenant_id,
                listing_id=listing_id,
                price=price,
                price_per_sqm=price_per_sqm,
                change_type=change_type,
                recorded_at=recorded_at,
            )
        )
        self._session.flush()

    def deactivate_missing(
        self,
        *,
        tenant_id: str,
        source_platform: str,
        seen_ids: Collection[str],
        updated_at: datetime,
    ) -> int:
        stmt = update(CompetitorListing).where(
            CompetitorListing.tenant_id == tenant_id,
            CompetitorListing.source_platform == source_platform,
            CompetitorListing.is_active.is_(True),
        )
        if seen_ids:
            stmt = stmt.where(CompetitorListing.source_listing_id.not_in(list(seen_ids)))
        stmt = stmt.values(is_active=False, updated_at=updated_at).execution_options(
            synchronize_session=False
        )
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)
