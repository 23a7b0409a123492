"""
Document endpoints: presigned upload/download grants, listing, delete.

Bytes never pass through this service. Two routers:
- request_documents_router: /requests/{request_id}/documents
- router: /documents/{document_id}
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor, get_current_actor
from app.core.blobstore import S3BlobStore, get_blob_store
from app.core.database import get_session
from app.core.events import publish_event
from app.services.documents import (
    delete_document,
    issue_download_grant,
    issue_upload_grant,
    list_documents,
)
from checkin_shared.schemas.common import RequestStatus
from checkin_shared.schemas.documents import (
    DocumentRead,
    DownloadGrantRead,
    UploadGrantRead,
    UploadGrantRequest,
)

request_documents_router = APIRouter()
router = APIRouter()


@request_documents_router.post("/upload-grant", response_model=UploadGrantRead, status_code=201)
async def upload_grant_endpoint(
    request_id: uuid.UUID,
    body: UploadGrantRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
    blob_store: S3BlobStore = Depends(get_blob_store),
):
    """Record a document and return a presigned PUT URL for its bytes."""
    grant, doc, started = await issue_upload_grant(
        session, blob_store, request_id, body.file_name, body.mime_type, actor.actor_id
    )
    await session.commit()

    await publish_event(
        "document.upload_granted",
        {
            "request_id": str(request_id),
            "document_id": str(doc.id),
            "mime_type": doc.mime_type,
        },
        actor_id=actor.actor_id,
    )
    if started:
        await publish_event(
            "request.transitioned",
            {
                "request_id": str(request_id),
                "status": RequestStatus.IN_PROGRESS.value,
                "role": actor.role.value,
                "trigger": "upload",
            },
            actor_id=actor.actor_id,
        )
    return UploadGrantRead(
        upload_url=grant.url,
        url_expires_at=grant.expires_at,
        document=DocumentRead.model_validate(doc.model_dump()),
    )


@request_documents_router.get("/", response_model=List[DocumentRead])
async def list_documents_endpoint(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    """Unexpired documents attached to a request (parties only)."""
    docs = await list_documents(session, request_id, actor.actor_id)
    return [DocumentRead.model_validate(d.model_dump()) for d in docs]


@router.get("/{document_id}/download-grant", response_model=DownloadGrantRead)
async def download_grant_endpoint(
    document_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
    blob_store: S3BlobStore = Depends(get_blob_store),
):
    """Presigned GET URL; 410 once the document is past its 48h lifetime."""
    grant = await issue_download_grant(session, blob_store, document_id, actor.actor_id)
    return DownloadGrantRead(download_url=grant.url, url_expires_at=grant.expires_at)


@router.delete("/{document_id}", status_code=204)
async def delete_document_endpoint(
    document_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
    blob_store: S3BlobStore = Depends(get_blob_store),
):
    await delete_document(session, blob_store, document_id, actor.actor_id)
    await session.commit()
