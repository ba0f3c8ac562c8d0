"""create market intelligence scrape tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "org_scrape_configs",
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("platforms", postgresql.ARRAY(sa.String(length=50)), server_default="{}", nullable=False),
        sa.Column("target_areas", postgresql.ARRAY(sa.String(length=100)), server_default="{}", nullable=False),
        sa.Column(
            "target_municipalities",
            postgresql.ARRAY(sa.String(length=100)),
            server_default="{}",
            nullable=False,
        ),
        sa.Column("transaction_types", postgresql.ARRAY(sa.String(length=20)), server_default="{}", nullable=False),
        sa.Column("property_types", postgresql.ARRAY(sa.String(length=50)), server_default="{}", nullable=False),
        sa.Column("min_price", sa.Integer(), nullable=True),
        sa.Column("max_price", sa.Integer(), nullable=True),
        sa.Column("max_pages_per_platform", sa.Integer(), server_default=sa.text("10"), nullable=False),
        sa.Column(
            "min_successful_platforms",
            sa.Integer(),
            server_default=sa.text("1"),
            nullable=False,
            comment="Platforms that must complete for the job to count as successful",
        ),
        sa.Column("scrape_frequency", sa.String(length=20), server_default="DAILY", nullable=False),
        sa.Column("status", sa.String(length=20), server_default="PENDING_SETUP", nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_scrape_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_scrape_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("tenant_id"),
    )
    op.create_index(
        "ix_org_scrape_configs_due",
        "org_scrape_configs",
        ["is_enabled", "status", "next_scrape_at"],
        unique=False,
    )

    op.create_table(
        "scrape_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, comment="Owning organization identifier"),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            comment="PENDING, RUNNING, COMPLETED, FAILED, CANCELLED",
        ),
        sa.Column("platforms", postgresql.ARRAY(sa.String(length=50)), server_default="{}", nullable=False),
        sa.Column("current_platform", sa.String(length=50), nullable=True),
        sa.Column("current_action", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "progress",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
            comment="platform -> {status,total,passed,failed,errors}",
        ),
        sa.Column("substrate", sa.String(length=16), server_default="inline", nullable=False),
        sa.Column("external_job_name", sa.String(length=128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scrape_jobs_tenant_created_at", "scrape_jobs", ["tenant_id", "created_at"], unique=False)
    op.create_index("ix_scrape_jobs_status", "scrape_jobs", ["status"], unique=False)
    op.create_index(
        "uq_scrape_jobs_active_tenant",
        "scrape_jobs",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'RUNNING')"),
    )

    op.create_table(
        "competitor_listings",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("source_platform", sa.String(length=50), nullable=False),
        sa.Column("source_listing_id", sa.String(length=255), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("price", sa.Integer(), nullable=True),
        sa.Column("price_text", sa.String(length=100), nullable=True),
        sa.Column("price_per_sqm", sa.Integer(), nullable=True),
        sa.Column("property_type", sa.String(length=50), nullable=True),
        sa.Column("transaction_type", sa.String(length=20), server_default="sale", nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("area", sa.String(length=100), nullable=True),
        sa.Column("municipality", sa.String(length=100), nullable=True),
        sa.Column("postal_code", sa.String(length=10), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("size_sqm", sa.Integer(), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Integer(), nullable=True),
        sa.Column("floor", sa.String(length=20), nullable=True),
        sa.Column("year_built", sa.Integer(), nullable=True),
        sa.Column("agency_name", sa.String(length=255), nullable=True),
        sa.Column("agency_phone", sa.String(length=50), nullable=True),
        sa.Column(
            "images",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("listing_date", sa.Date(), nullable=True),
        sa.Column("raw_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "source_platform",
            "source_listing_id",
            name="uq_competitor_listings_identity",
        ),
    )
    op.create_index(
        "ix_competitor_listings_tenant_platform_active",
        "competitor_listings",
        ["tenant_id", "source_platform", "is_active"],
        unique=False,
    )
    op.create_index("ix_competitor_listings_area", "competitor_listings", ["area"], unique=False)

    op.create_table(
        "listing_price_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("listing_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("price_per_sqm", sa.Integer(), nullable=True),
        sa.Column("change_type", sa.String(length=20), server_default="initial", nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["listing_id"], ["competitor_listings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_listing_price_history_listing_recorded",
        "listing_price_history",
        ["listing_id", "recorded_at"],
        unique=False,
    )

    op.create_table(
        "scrape_run_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(length=20), server_default="running", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("listings_found", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("listings_new", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("listings_updated", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("listings_deactivated", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("pages_scraped", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("errors", postgresql.ARRAY(sa.String()), server_default="{}", nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scrape_run_logs_tenant_started_at",
        "scrape_run_logs",
        ["tenant_id", "started_at"],
        unique=False,
    )
    op.create_index("ix_scrape_run_logs_platform", "scrape_run_logs", ["platform"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_scrape_run_logs_platform", table_name="scrape_run_logs")
    op.drop_index("ix_scrape_run_logs_tenant_started_at", table_name="scrape_run_logs")
    op.drop_table("scrape_run_logs")
    op.drop_index("ix_listing_price_history_listing_recorded", table_name="listing_price_history")
    op.drop_table("listing_price_history")
    op.drop_index("ix_competitor_listings_area", table_name="competitor_listings")
    op.drop_index("ix_competitor_listings_tenant_platform_active", table_name="competitor_listings")
    op.drop_table("competitor_listings")
    op.drop_index("uq_scrape_jobs_active_tenant", table_name="scrape_jobs")
    op.drop_index("ix_scrape_jobs_status", table_name="scrape_jobs")
    op.drop_index("ix_scrape_jobs_tenant_created_at", table_name="scrape_jobs")
    op.drop_table("scrape_jobs")
    op.drop_index("ix_org_scrape_configs_due", table_name="org_scrape_configs")
    op.drop_table("org_scrape_configs")
