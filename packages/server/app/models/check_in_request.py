"""Check-in request model."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class CheckInRequest(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "check_in_requests"
    __table_args__ = (
        sa.CheckConstraint("party_size >= 1", name="party_size_positive"),
        sa.CheckConstraint(
            "(status IN ('pending', 'expired', 'cancelled_by_creator')) OR fulfiller_id IS NOT NULL",
            name="fulfiller_bound_when_claimed",
        ),
        sa.Index("ix_check_in_requests_open", "status", "payment_status", "scheduled_at"),
    )

    creator_id: str = Field(nullable=False, index=True, max_length=128)
    fulfiller_id: Optional[str] = Field(default=None, index=True, max_length=128)

    address: str = Field(nullable=False)
    # On PostgreSQL a generated geography column ("location") is derived from these.
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)
    scheduled_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    party_size: int = Field(default=1, nullable=False)
    guest_name: Optional[str] = None
    notes: Optional[str] = None

    fee: Decimal = Field(nullable=False, sa_type=sa.Numeric(10, 2))
    platform_fee_rate: Decimal = Field(nullable=False, sa_type=sa.Numeric(5, 4))
    platform_fee: Optional[Decimal] = Field(default=None, sa_type=sa.Numeric(10, 2))
    fulfiller_payout: Optional[Decimal] = Field(default=None, sa_type=sa.Numeric(10, 2))

    # pending | accepted | in_progress | completed | cancelled_by_creator | cancelled_by_fulfiller | expired
    status: str = Field(nullable=False, default="pending", index=True)
    # pending | succeeded | failed | refunded
    payment_status: str = Field(nullable=False, default="pending")
    payment_failure_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    accepted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    started_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    completed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def is_party(self, actor_id: str) -> bool:
        return actor_id in (self.creator_id, self.fulfiller_id)
