"""
db/models/competitor_listing.py

Canonical competitor listings and their append-only price history.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin

LISTING_IDENTITY_CONSTRAINT = "uq_competitor_listings_identity"


class PriceChangeType:
    INITIAL = "initial"
    INCREASE = "increase"
    DECREASE = "decrease"


class CompetitorListing(Base, TimestampMixin):
    __tablename__ = "competitor_listings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_platform: Mapped[str] = mapped_column(String(50), nullable=False)
    source_listing_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_text: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price_per_sqm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    property_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, default="sale")

    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    area: Mapped[str | None] = mapped_column(String(100), nullable=True)
    municipality: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    size_sqm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    floor: Mapped[str | None] = mapped_column(String(20), nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)

    agency_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    agency_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    images: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    listing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "source_platform",
            "source_listing_id",
            name=LISTING_IDENTITY_CONSTRAINT,
        ),
        Index("ix_competitor_listings_tenant_platform_active", "tenant_id", "source_platform", "is_active"),
        Index("ix_competitor_listings_area", "area"),
    )


class ListingPriceHistory(Base):
    __tablename__ = "listing_price_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("competitor_listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_sqm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False, default=PriceChangeType.INITIAL)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_listing_price_history_listing_recorded", "listing_id", "recorded_at"),
    )
