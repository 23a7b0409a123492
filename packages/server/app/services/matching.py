"""
Matching engine: request creation, nearby discovery and the atomic claim.

Handles:
- Request creation with best-effort geocoding
- Nearby query for fulfillers (delegates to the GeoIndex)
- Claim as one conditional UPDATE; the loser learns why from a re-read
- Party-scoped reads and listings
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import Actor
from app.core.config import get_settings
from app.core.errors import (
    AccessDenied,
    AlreadyClaimed,
    NotFound,
    PaymentNotSucceeded,
    ServiceError,
    UpstreamUnavailable,
    ValidationError,
)
from app.core.geocoding import Geocoder
from app.models.base import as_utc, utcnow
from app.models.check_in_request import CheckInRequest
from app.services import geo
from app.services.request_store import conditional_update, get_request, get_request_or_404
from checkin_shared.schemas.common import (
    ActorRole,
    Pagination,
    PaymentStatus,
    RequestStatus,
)
from checkin_shared.schemas.requests import CheckInRequestCreate

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def _validate_create(payload: CheckInRequestCreate, now: datetime) -> datetime:
    if not payload.address or not payload.address.strip():
        raise ValidationError("address must not be empty")
    if payload.party_size < 1:
        raise ValidationError("party_size must be at least 1", party_size=payload.party_size)

    scheduled_at = as_utc(payload.scheduled_at)
    if scheduled_at <= now:
        raise ValidationError(
            "scheduled_at must be in the future",
            scheduled_at=scheduled_at.isoformat(),
        )

    if (payload.latitude is None) != (payload.longitude is None):
        raise ValidationError("latitude and longitude must be given together")
    if payload.latitude is not None:
        geo.validate_point(payload.latitude, payload.longitude)
    return scheduled_at


async def _locate(geocoder: Optional[Geocoder], address: str) -> tuple[float, float] | None:
    if geocoder is None:
        return None
    try:
        point = await geocoder.geocode(address)
    except UpstreamUnavailable as exc:
        log.warning("request.geocoding_failed", error=exc.message)
        return None
    if point is None:
        log.info("request.geocoding_no_match")
    return point


async def create_request(
    session: AsyncSession,
    creator_id: str,
    payload: CheckInRequestCreate,
    *,
    geocoder: Optional[Geocoder] = None,
    now: datetime | None = None,
) -> CheckInRequest:
    """Create a pending, unpaid request. A geocoder outage leaves it unlocated."""
    settings = get_settings()
    now = now or utcnow()
    scheduled_at = _validate_create(payload, now)
    address = payload.address.strip()

    if payload.latitude is not None:
        point = (payload.latitude, payload.longitude)
    else:
        point = await _locate(geocoder, address)

    req = CheckInRequest(
        creator_id=creator_id,
        address=address,
        latitude=point[0] if point else None,
        longitude=point[1] if point else None,
        scheduled_at=scheduled_at,
        party_size=payload.party_size,
        guest_name=payload.guest_name,
        notes=payload.notes,
        fee=settings.base_fee,
        platform_fee_rate=settings.platform_fee_rate,
        status=RequestStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    session.add(req)
    await session.flush()
    log.info(
        "request.created",
        request_id=str(req.id),
        creator_id=creator_id,
        located=req.has_location,
    )
    return req


# ---------------------------------------------------------------------------
# Nearby
# ---------------------------------------------------------------------------


async def find_nearby_claimable(
    session: AsyncSession,
    latitude: float,
    longitude: float,
    radius_km: float,
    *,
    now: datetime | None = None,
) -> list[tuple[CheckInRequest, float]]:
    settings = get_settings()
    geo.validate_point(latitude, longitude)
    geo.validate_radius(radius_km, settings.max_search_radius_km)
    return await geo.nearby_claimable_requests(
        session,
        latitude,
        longitude,
        radius_km,
        now=now or utcnow(),
        limit=settings.nearby_result_limit,
    )


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


def _claim_failure(
    req: CheckInRequest | None, request_id: uuid.UUID, fulfiller_id: str
) -> ServiceError:
    """Pick the error for a claim that affected zero rows."""
    if req is None:
        return NotFound("Check-in request not found", request_id=str(request_id))
    if req.creator_id == fulfiller_id:
        return AccessDenied("Cannot claim your own request", request_id=str(request_id))
    if req.payment_status != PaymentStatus.SUCCEEDED.value:
        return PaymentNotSucceeded(
            "Request is not paid",
            request_id=str(request_id),
            payment_status=req.payment_status,
        )
    if req.fulfiller_id is not None:
        return AlreadyClaimed("Request was already claimed", request_id=str(request_id))
    return NotFound(
        "Request is no longer open",
        request_id=str(request_id),
        status=req.status,
    )


async def claim(
    session: AsyncSession,
    request_id: uuid.UUID,
    fulfiller_id: str,
    *,
    now: datetime | None = None,
) -> CheckInRequest:
    """Bind ``fulfiller_id`` to a pending, paid request. Exactly one concurrent caller wins."""
    now = now or utcnow()
    affected = await conditional_update(
        session,
        request_id,
        CheckInRequest.status == RequestStatus.PENDING.value,
        CheckInRequest.payment_status == PaymentStatus.SUCCEEDED.value,
        CheckInRequest.fulfiller_id.is_(None),
        CheckInRequest.scheduled_at > now,
        CheckInRequest.creator_id != fulfiller_id,
        fulfiller_id=fulfiller_id,
        status=RequestStatus.ACCEPTED.value,
        accepted_at=now,
        updated_at=now,
    )
    req = await get_request(session, request_id)
    if affected == 1:
        log.info("request.claimed", request_id=str(request_id), fulfiller_id=fulfiller_id)
        return req

    error = _claim_failure(req, request_id, fulfiller_id)
    log.info(
        "request.claim_rejected",
        request_id=str(request_id),
        fulfiller_id=fulfiller_id,
        code=error.code,
    )
    raise error


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_request_for_actor(
    session: AsyncSession, request_id: uuid.UUID, actor: Actor
) -> CheckInRequest:
    req = await get_request_or_404(session, request_id)
    if actor.role == ActorRole.CREATOR and req.creator_id == actor.actor_id:
        return req
    if actor.role == ActorRole.FULFILLER:
        if req.fulfiller_id == actor.actor_id:
            return req
        # Open jobs can be inspected before claiming.
        if (
            req.status == RequestStatus.PENDING.value
            and req.payment_status == PaymentStatus.SUCCEEDED.value
        ):
            return req
    raise AccessDenied("Not a party to this check-in request", request_id=str(request_id))


async def list_requests(
    session: AsyncSession,
    actor: Actor,
    status: Optional[RequestStatus] = None,
    page: int = 1,
    per_page: int = 25,
) -> tuple[list[CheckInRequest], Pagination]:
    if actor.role == ActorRole.CREATOR:
        owner = CheckInRequest.creator_id == actor.actor_id
    else:
        owner = CheckInRequest.fulfiller_id == actor.actor_id

    stmt = select(CheckInRequest).where(owner)
    count_stmt = select(func.count()).select_from(CheckInRequest).where(owner)
    if status:
        stmt = stmt.where(CheckInRequest.status == status.value)
        count_stmt = count_stmt.where(CheckInRequest.status == status.value)

    total = (await session.execute(count_stmt)).scalar_one()
    stmt = (
        stmt.order_by(CheckInRequest.scheduled_at.desc(), CheckInRequest.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    result = await session.execute(stmt)
    pagination = Pagination(
        page=page,
        per_page=per_page,
        total=total,
        total_pages=max(1, math.ceil(total / per_page)),
    )
    return list(result.scalars().all()), pagination


# ---------------------------------------------------------------------------
# Re-geocoding
# ---------------------------------------------------------------------------


async def regeocode_missing(
    session: AsyncSession,
    geocoder: Geocoder,
    *,
    limit: int = 100,
    now: datetime | None = None,
) -> int:
    """Retry geocoding open requests that were created without a location."""
    now = now or utcnow()
    result = await session.execute(
        select(CheckInRequest.id, CheckInRequest.address)
        .where(
            CheckInRequest.status == RequestStatus.PENDING.value,
            CheckInRequest.latitude.is_(None),
            CheckInRequest.scheduled_at > now,
        )
        .order_by(CheckInRequest.scheduled_at)
        .limit(limit)
    )
    located = 0
    for request_id, address in result.all():
        try:
            point = await geocoder.geocode(address)
        except UpstreamUnavailable as exc:
            log.warning("request.regeocode_failed", request_id=str(request_id), error=exc.message)
            continue
        if point is None:
            continue
        located += await conditional_update(
            session,
            request_id,
            CheckInRequest.latitude.is_(None),
            latitude=point[0],
            longitude=point[1],
        )
    if located:
        log.info("request.regeocoded", count=located)
    return located
