"""
db/models/org_scrape_config.py

Per-tenant market-intelligence scrape configuration.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class OrgScrapeConfigRecord(Base, TimestampMixin):
    __tablename__ = "org_scrape_configs"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    platforms: Mapped[list[str]] = mapped_column(ARRAY(String(50)), nullable=False, default=list)
    target_areas: Mapped[list[str]] = mapped_column(ARRAY(String(100)), nullable=False, default=list)
    target_municipalities: Mapped[list[str]] = mapped_column(
        ARRAY(String(100)),
        nullable=False,
        default=list,
    )
    transaction_types: Mapped[list[str]] = mapped_column(ARRAY(String(20)), nullable=False, default=list)
    property_types: Mapped[list[str]] = mapped_column(ARRAY(String(50)), nullable=False, default=list)
    min_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_pages_per_platform: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    min_successful_platforms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Platforms that must complete for the job to count as successful",
    )
    scrape_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="DAILY")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING_SETUP")
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_scrape_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_scrape_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_org_scrape_configs_due", "is_enabled", "status", "next_scrape_at"),
    )
