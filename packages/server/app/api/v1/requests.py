"""
Check-in request endpoints: create, discover, claim, transition.

Lifecycle: pending → accepted (claim) → in_progress → completed
- Claim is atomic: of N concurrent claimers exactly one gets 200, the rest 409/404.
- Transitions are role-scoped; illegal moves return 409 with the allowed set.
- Events are published after each committed mutation.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor, get_current_actor, require_creator, require_fulfiller
from app.core.config import get_settings
from app.core.database import get_session
from app.core.events import publish_event
from app.core.geocoding import Geocoder, get_geocoder
from app.models.check_in_request import CheckInRequest
from app.services import lifecycle, matching
from checkin_shared.schemas.common import RequestStatus
from checkin_shared.schemas.requests import (
    CancelRequest,
    CheckInRequestCreate,
    CheckInRequestList,
    CheckInRequestRead,
    NearbyRequestRead,
    NearbyRequestsResponse,
    RequestTransition,
)

router = APIRouter()


def to_read(req: CheckInRequest) -> CheckInRequestRead:
    return CheckInRequestRead.model_validate(req.model_dump())


async def _publish(event_type: str, req: CheckInRequest, actor_id: str, **extra) -> None:
    await publish_event(
        event_type,
        {"request_id": str(req.id), "status": req.status, **extra},
        actor_id=actor_id,
    )


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------


@router.post("/", response_model=CheckInRequestRead, status_code=201)
async def create_request_endpoint(
    body: CheckInRequestCreate,
    actor: Actor = Depends(require_creator),
    session: AsyncSession = Depends(get_session),
    geocoder: Geocoder = Depends(get_geocoder),
):
    """Create a check-in request. The address is geocoded unless coordinates are given."""
    req = await matching.create_request(session, actor.actor_id, body, geocoder=geocoder)
    await session.commit()

    await _publish(
        "request.created",
        req,
        actor.actor_id,
        scheduled_at=req.scheduled_at.isoformat(),
        located=req.has_location,
    )
    return to_read(req)


@router.get("/", response_model=CheckInRequestList)
async def list_requests_endpoint(
    status: Optional[RequestStatus] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    """Creators see requests they created; fulfillers see requests they claimed."""
    reqs, pagination = await matching.list_requests(session, actor, status, page, per_page)
    return CheckInRequestList(data=[to_read(r) for r in reqs], pagination=pagination)


@router.get("/nearby", response_model=NearbyRequestsResponse)
async def nearby_requests_endpoint(
    latitude: float,
    longitude: float,
    radius_km: Optional[float] = None,
    actor: Actor = Depends(require_fulfiller),
    session: AsyncSession = Depends(get_session),
):
    """Open, paid requests within radius_km of the point, nearest first."""
    radius = radius_km if radius_km is not None else get_settings().max_search_radius_km
    hits = await matching.find_nearby_claimable(session, latitude, longitude, radius)
    return NearbyRequestsResponse(
        data=[
            NearbyRequestRead(**req.model_dump(), distance_km=round(dist, 3))
            for req, dist in hits
        ],
        radius_km=radius,
    )


@router.get("/{request_id}", response_model=CheckInRequestRead)
async def get_request_endpoint(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    req = await matching.get_request_for_actor(session, request_id, actor)
    return to_read(req)


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


@router.post("/{request_id}/claim", response_model=CheckInRequestRead)
async def claim_request_endpoint(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_fulfiller),
    session: AsyncSession = Depends(get_session),
):
    """Claim an open, paid request. Losers of a race get 409 ALREADY_CLAIMED."""
    req = await matching.claim(session, request_id, actor.actor_id)
    await session.commit()

    await _publish("request.claimed", req, actor.actor_id, fulfiller_id=actor.actor_id)
    return to_read(req)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def _committed(
    session: AsyncSession, req: CheckInRequest, actor: Actor
) -> CheckInRequestRead:
    await session.commit()
    await _publish("request.transitioned", req, actor.actor_id, role=actor.role.value)
    return to_read(req)


@router.post("/{request_id}/transition", response_model=CheckInRequestRead)
async def transition_request_endpoint(
    request_id: uuid.UUID,
    body: RequestTransition,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    """Move a request along the lifecycle table for the caller's role."""
    req = await lifecycle.transition_request(
        session, request_id, actor.actor_id, actor.role, body.to_status, body.reason
    )
    return await _committed(session, req, actor)


@router.post("/{request_id}/start", response_model=CheckInRequestRead)
async def start_request_endpoint(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_fulfiller),
    session: AsyncSession = Depends(get_session),
):
    req = await lifecycle.start_request(session, request_id, actor.actor_id)
    return await _committed(session, req, actor)


@router.post("/{request_id}/complete", response_model=CheckInRequestRead)
async def complete_request_endpoint(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_fulfiller),
    session: AsyncSession = Depends(get_session),
):
    req = await lifecycle.complete_request(session, request_id, actor.actor_id)
    return await _committed(session, req, actor)


@router.post("/{request_id}/cancel", response_model=CheckInRequestRead)
async def cancel_request_endpoint(
    request_id: uuid.UUID,
    body: Optional[CancelRequest] = Body(None),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    """Cancel as the caller's role (cancelled_by_creator / cancelled_by_fulfiller)."""
    req = await lifecycle.cancel_request(
        session, request_id, actor.actor_id, actor.role, body.reason if body else None
    )
    return await _committed(session, req, actor)
