"""Check-in requests, documents and fulfiller locations with PostGIS geography.

Revision ID: 0001_checkin_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_checkin_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # -----------------------------------------------------------------------
    # check_in_requests
    # -----------------------------------------------------------------------
    op.create_table(
        "check_in_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("creator_id", sa.String(128), nullable=False),
        sa.Column("fulfiller_id", sa.String(128), nullable=True),
        sa.Column("address", sa.Text, nullable=False),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("scheduled_at", TS, nullable=False),
        sa.Column("party_size", sa.Integer, nullable=False, server_default="1"),
        sa.Column("guest_name", sa.String, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("fulfiller_payout", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String, nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String, nullable=False, server_default="pending"),
        sa.Column("payment_failure_reason", sa.String, nullable=True),
        sa.Column("cancellation_reason", sa.String, nullable=True),
        sa.Column("accepted_at", TS, nullable=True),
        sa.Column("started_at", TS, nullable=True),
        sa.Column("completed_at", TS, nullable=True),
        sa.Column("cancelled_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("party_size >= 1", name="party_size_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'in_progress', 'completed', "
            "'cancelled_by_creator', 'cancelled_by_fulfiller', 'expired')",
            name="status_valid",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'succeeded', 'failed', 'refunded')",
            name="payment_status_valid",
        ),
        # Bound fulfiller and non-pending status go together.
        sa.CheckConstraint(
            "(status IN ('pending', 'expired', 'cancelled_by_creator')) OR fulfiller_id IS NOT NULL",
            name="fulfiller_bound_when_claimed",
        ),
    )
    op.create_index("ix_check_in_requests_creator_id", "check_in_requests", ["creator_id"])
    op.create_index("ix_check_in_requests_fulfiller_id", "check_in_requests", ["fulfiller_id"])
    op.create_index("ix_check_in_requests_status", "check_in_requests", ["status"])
    op.create_index(
        "ix_check_in_requests_open",
        "check_in_requests",
        ["status", "payment_status", "scheduled_at"],
    )

    op.execute(
        "ALTER TABLE check_in_requests ADD COLUMN location geography(Point, 4326) "
        "GENERATED ALWAYS AS (CASE WHEN latitude IS NULL OR longitude IS NULL THEN NULL "
        "ELSE ST_SetSRID(ST_MakePoint(longitude, latitude), 4326)::geography END) STORED"
    )
    op.execute(
        "CREATE INDEX ix_check_in_requests_location ON check_in_requests USING GIST (location)"
    )

    # -----------------------------------------------------------------------
    # documents
    # -----------------------------------------------------------------------
    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "request_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("check_in_requests.id"),
            nullable=False,
        ),
        sa.Column("uploader_id", sa.String(128), nullable=False),
        sa.Column("blob_key", sa.String(1024), nullable=False, unique=True),
        sa.Column("file_name", sa.String, nullable=False),
        sa.Column("mime_type", sa.String(50), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", TS, nullable=False),
        sa.CheckConstraint("expires_at > created_at", name="expires_after_created"),
    )
    op.create_index("ix_documents_request_id", "documents", ["request_id"])
    op.create_index("ix_documents_expires_at", "documents", ["expires_at"])

    # -----------------------------------------------------------------------
    # fulfiller_locations
    # -----------------------------------------------------------------------
    op.create_table(
        "fulfiller_locations",
        sa.Column("fulfiller_id", sa.String(128), primary_key=True),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_fulfiller_locations_updated_at", "fulfiller_locations", ["updated_at"])
    op.execute(
        "ALTER TABLE fulfiller_locations ADD COLUMN location geography(Point, 4326) "
        "GENERATED ALWAYS AS (ST_SetSRID(ST_MakePoint(longitude, latitude), 4326)::geography) STORED"
    )
    op.execute(
        "CREATE INDEX ix_fulfiller_locations_location ON fulfiller_locations USING GIST (location)"
    )


def downgrade() -> None:
    # Generated columns and their GiST indexes go with the tables.
    op.drop_table("fulfiller_locations")
    op.drop_table("documents")
    op.drop_table("check_in_requests")
