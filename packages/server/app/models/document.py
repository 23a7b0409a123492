"""Uploaded evidence document (metadata only; bytes live in the blob store)."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class Document(UUIDMixin, SQLModel, table=True):
    __tablename__ = "documents"

    request_id: uuid.UUID = Field(foreign_key="check_in_requests.id", nullable=False, index=True)
    uploader_id: str = Field(nullable=False, max_length=128)
    blob_key: str = Field(nullable=False, max_length=1024, unique=True)
    file_name: str = Field(nullable=False)
    mime_type: str = Field(nullable=False, max_length=50)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: datetime = Field(nullable=False, index=True, sa_type=sa.DateTime(timezone=True))
