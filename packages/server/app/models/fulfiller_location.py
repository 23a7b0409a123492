"""Last reported position of a fulfiller."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class FulfillerLocation(SQLModel, table=True):
    __tablename__ = "fulfiller_locations"

    fulfiller_id: str = Field(primary_key=True, max_length=128)
    latitude: float = Field(nullable=False)
    longitude: float = Field(nullable=False)
    is_available: bool = Field(default=True, nullable=False)
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        index=True,
        sa_type=sa.DateTime(timezone=True),
    )
