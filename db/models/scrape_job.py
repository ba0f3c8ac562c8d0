"""
db/models/scrape_job.py

Scrape job model tracking one market-intelligence run per tenant.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin

ACTIVE_JOB_INDEX = "uq_scrape_jobs_active_tenant"


class ScrapeJobRecord(Base, TimestampMixin):
    __tablename__ = "scrape_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Owning organization identifier",
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="PENDING, RUNNING, COMPLETED, FAILED, CANCELLED",
    )
    platforms: Mapped[list[str]] = mapped_column(
        ARRAY(String(50)),
        nullable=False,
        default=list,
    )
    current_platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_action: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    progress: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="platform -> {status,total,passed,failed,errors}",
    )
    substrate: Mapped[str] = mapped_column(String(16), nullable=False, default="inline")
    external_job_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_scrape_jobs_tenant_created_at", "tenant_id", "created_at"),
        Index("ix_scrape_jobs_status", "status"),
        Index(
            ACTIVE_JOB_INDEX,
            "tenant_id",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'RUNNING')"),
        ),
    )
