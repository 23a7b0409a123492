"""
Manual sweep trigger, for deployments without an ARQ worker (or for ops).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import require_maintenance
from app.core.blobstore import S3BlobStore, get_blob_store
from app.core.database import get_session
from app.services.documents import sweep_expired
from app.services.lifecycle import expire_overdue
from checkin_shared.schemas.documents import SweepResult

router = APIRouter()


@router.post("/sweep", response_model=SweepResult, dependencies=[Depends(require_maintenance)])
async def sweep_endpoint(
    session: AsyncSession = Depends(get_session),
    blob_store: S3BlobStore = Depends(get_blob_store),
):
    """Expire overdue requests, then delete documents past their TTL."""
    expired = await expire_overdue(session)
    await session.commit()
    deleted = await sweep_expired(session, blob_store)
    return SweepResult(expired_requests=expired, deleted_documents=deleted)
