"""
Document lifecycle: upload/download grants, listing, delete and TTL sweep.

Every document lives exactly ``document_ttl_hours`` (48h) from creation.
Download grants are refused once that passes, whether or not the sweep has
reached the blob yet, and never outlive the document itself.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.errors import (
    AccessDenied,
    Expired,
    NotFound,
    UploadNotAllowed,
    UpstreamUnavailable,
    ValidationError,
)
from app.models.base import as_utc, utcnow
from app.models.check_in_request import CheckInRequest
from app.models.document import Document
from app.services.lifecycle import mark_started_on_upload
from app.services.request_store import get_request_or_404
from checkin_shared.schemas.common import RequestStatus

log = structlog.get_logger()

UPLOADABLE_STATUSES = frozenset({RequestStatus.ACCEPTED, RequestStatus.IN_PROGRESS})

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
MAX_FILE_NAME = 255


@dataclass
class Grant:
    """A presigned URL and the instant it stops working."""

    url: str
    expires_at: datetime


def build_blob_key(request_id: uuid.UUID, document_id: uuid.UUID, file_name: str) -> str:
    safe = _UNSAFE_CHARS.sub("_", file_name).strip("._") or "file"
    return f"requests/{request_id}/{document_id}/{safe[:128]}"


def _validate_upload(file_name: str, mime_type: str) -> str:
    settings = get_settings()
    if mime_type not in settings.allowed_mime_types:
        raise ValidationError(
            f"Unsupported file type '{mime_type}'",
            allowed=settings.allowed_mime_types,
        )
    name = (file_name or "").strip()
    if not name:
        raise ValidationError("file_name must not be empty")
    if len(name) > MAX_FILE_NAME:
        raise ValidationError(f"file_name must be at most {MAX_FILE_NAME} characters")
    return name


async def _get_document_or_404(session: AsyncSession, document_id: uuid.UUID) -> Document:
    doc = await session.get(Document, document_id)
    if doc is None:
        raise NotFound("Document not found", document_id=str(document_id))
    return doc


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


async def issue_upload_grant(
    session: AsyncSession,
    blob_store,
    request_id: uuid.UUID,
    file_name: str,
    mime_type: str,
    uploader_id: str,
    *,
    now: datetime | None = None,
) -> tuple[Grant, Document, bool]:
    """Record a Document and presign a PUT for it.

    Returns (grant, document, started); ``started`` is True when this upload
    moved an accepted request to in_progress.

    The metadata row is flushed before the URL is handed out, so the sweep
    always knows about any blob a client can write.
    """
    settings = get_settings()
    now = now or utcnow()
    name = _validate_upload(file_name, mime_type)

    req = await get_request_or_404(session, request_id)
    if not req.is_party(uploader_id):
        raise AccessDenied("Not a party to this check-in request", request_id=str(request_id))

    status = RequestStatus(req.status)
    if status not in UPLOADABLE_STATUSES:
        raise UploadNotAllowed(status.value, sorted(s.value for s in UPLOADABLE_STATUSES))

    document_id = uuid.uuid4()
    doc = Document(
        id=document_id,
        request_id=req.id,
        uploader_id=uploader_id,
        blob_key=build_blob_key(req.id, document_id, name),
        file_name=name,
        mime_type=mime_type,
        created_at=now,
        expires_at=now + timedelta(hours=settings.document_ttl_hours),
    )
    session.add(doc)
    await session.flush()

    started = False
    if status == RequestStatus.ACCEPTED and req.fulfiller_id == uploader_id:
        started = await mark_started_on_upload(session, req, uploader_id, now=now)

    ttl = settings.upload_grant_ttl_seconds
    url = blob_store.presign_put(doc.blob_key, mime_type, ttl)
    log.info(
        "document.upload_granted",
        document_id=str(doc.id),
        request_id=str(req.id),
        uploader_id=uploader_id,
    )
    return Grant(url=url, expires_at=now + timedelta(seconds=ttl)), doc, started


async def issue_download_grant(
    session: AsyncSession,
    blob_store,
    document_id: uuid.UUID,
    actor_id: str,
    *,
    now: datetime | None = None,
) -> Grant:
    settings = get_settings()
    now = now or utcnow()

    doc = await _get_document_or_404(session, document_id)
    req = await session.get(CheckInRequest, doc.request_id)
    if req is None or not req.is_party(actor_id):
        raise AccessDenied("Not a party to this check-in request", document_id=str(document_id))

    expires_at = as_utc(doc.expires_at)
    if now > expires_at:
        raise Expired(
            "Document has expired",
            document_id=str(document_id),
            expired_at=expires_at.isoformat(),
        )

    url_expires_at = min(now + timedelta(seconds=settings.download_grant_ttl_seconds), expires_at)
    ttl = max(1, int((url_expires_at - now).total_seconds()))
    url = blob_store.presign_get(doc.blob_key, ttl, file_name=doc.file_name)
    return Grant(url=url, expires_at=url_expires_at)


# ---------------------------------------------------------------------------
# Listing / delete
# ---------------------------------------------------------------------------


async def list_documents(
    session: AsyncSession,
    request_id: uuid.UUID,
    actor_id: str,
    *,
    now: datetime | None = None,
) -> list[Document]:
    now = now or utcnow()
    req = await get_request_or_404(session, request_id)
    if not req.is_party(actor_id):
        raise AccessDenied("Not a party to this check-in request", request_id=str(request_id))

    result = await session.execute(
        select(Document)
        .where(Document.request_id == request_id, Document.expires_at >= now)
        .order_by(Document.created_at)
    )
    return list(result.scalars().all())


async def delete_document(
    session: AsyncSession,
    blob_store,
    document_id: uuid.UUID,
    actor_id: str,
) -> None:
    """Uploader-initiated delete: blob first, then the row."""
    doc = await _get_document_or_404(session, document_id)
    if doc.uploader_id != actor_id:
        raise AccessDenied("Only the uploader may delete this document", document_id=str(document_id))

    await blob_store.delete(doc.blob_key)
    await session.execute(delete(Document).where(Document.id == document_id))
    log.info("document.deleted", document_id=str(document_id), actor_id=actor_id)


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


async def sweep_expired(
    session: AsyncSession,
    blob_store,
    *,
    now: datetime | None = None,
) -> int:
    """Delete every document past its expiry. Returns rows removed.

    Commits after each document; a failure on one is logged and the sweep
    moves on. Safe to run concurrently or after a partial run: the blob
    delete is idempotent and the row delete counts only rows still present.
    """
    now = now or utcnow()
    result = await session.execute(
        select(Document.id, Document.blob_key)
        .where(Document.expires_at < now)
        .order_by(Document.expires_at)
    )
    candidates = result.all()
    await session.commit()

    deleted = 0
    for document_id, blob_key in candidates:
        try:
            await blob_store.delete(blob_key)
            res = await session.execute(delete(Document).where(Document.id == document_id))
            await session.commit()
        except (UpstreamUnavailable, SQLAlchemyError) as exc:
            await session.rollback()
            log.warning(
                "document.sweep_failed",
                document_id=str(document_id),
                blob_key=blob_key,
                error=str(exc),
            )
            continue
        deleted += res.rowcount

    log.info("document.sweep_completed", candidates=len(candidates), deleted=deleted)
    return deleted
