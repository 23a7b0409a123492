"""Document grant schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel
from pydantic import UUID4


class UploadGrantRequest(BaseModel):
    """Request body for POST /requests/{requestId}/documents/upload-grant."""
    file_name: str
    mime_type: str


class DocumentRead(BaseModel):
    id: UUID4
    request_id: UUID4
    uploader_id: str
    file_name: str
    mime_type: str
    created_at: datetime
    expires_at: datetime


class UploadGrantRead(BaseModel):
    upload_url: str
    url_expires_at: datetime
    document: DocumentRead


class DownloadGrantRead(BaseModel):
    download_url: str
    url_expires_at: datetime


class SweepResult(BaseModel):
    expired_requests: int
    deleted_documents: int
