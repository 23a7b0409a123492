"""
ARQ background tasks: request expiry, document TTL sweep, re-geocoding.

Every task is idempotent and safe to run from several workers at once; the
same sweeps can also be triggered over HTTP (POST /api/v1/maintenance/sweep).

Run with:  arq app.tasks.sweeps.WorkerSettings
"""

from __future__ import annotations

import structlog
from arq.cron import cron

from app.core.blobstore import get_blob_store
from app.core.config import get_settings
from app.core.database import get_session_context
from app.core.geocoding import get_geocoder
from app.core.logging import configure_logging
from app.core.redis import arq_redis_settings
from app.services.documents import sweep_expired
from app.services.lifecycle import expire_overdue
from app.services.matching import regeocode_missing

log = structlog.get_logger()


async def expire_overdue_requests(ctx: dict) -> int:
    """Expire pending requests whose scheduled time has passed."""
    async with get_session_context() as session:
        count = await expire_overdue(session)
    if count:
        log.info("sweeps.requests_expired", count=count)
    return count


async def sweep_expired_documents(ctx: dict) -> int:
    """Delete documents (blob, then row) past their 48h TTL."""
    async with get_session_context() as session:
        return await sweep_expired(session, get_blob_store())


async def regeocode_requests(ctx: dict) -> int:
    """Locate open requests that were created while the geocoder was down."""
    async with get_session_context() as session:
        return await regeocode_missing(session, get_geocoder())


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    log.info("sweeps.worker_started")


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [expire_overdue_requests, sweep_expired_documents, regeocode_requests]
    cron_jobs = [
        cron(expire_overdue_requests, minute=set(range(0, 60, 5))),
        cron(sweep_expired_documents, minute=0),
        cron(regeocode_requests, minute={0, 15, 30, 45}),
    ]
    on_startup = startup
    redis_settings = arq_redis_settings()
