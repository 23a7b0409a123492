"""
Fulfiller presence endpoints.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor, require_creator, require_fulfiller
from app.core.config import get_settings
from app.core.database import get_session
from app.services.fulfillers import find_nearby_fulfillers, update_location
from checkin_shared.schemas.requests import (
    FulfillerLocationRead,
    FulfillerLocationUpdate,
    NearbyFulfillerRead,
)

router = APIRouter()


@router.put("/me/location", response_model=FulfillerLocationRead)
async def update_location_endpoint(
    body: FulfillerLocationUpdate,
    actor: Actor = Depends(require_fulfiller),
    session: AsyncSession = Depends(get_session),
):
    """Report the caller's position and whether they are taking jobs."""
    loc = await update_location(session, actor.actor_id, body)
    await session.commit()
    return FulfillerLocationRead.model_validate(loc.model_dump())


@router.get("/nearby", response_model=List[NearbyFulfillerRead])
async def nearby_fulfillers_endpoint(
    latitude: float,
    longitude: float,
    radius_km: float | None = None,
    actor: Actor = Depends(require_creator),
    session: AsyncSession = Depends(get_session),
):
    """Available fulfillers with a recent position near the point."""
    radius = radius_km if radius_km is not None else get_settings().max_search_radius_km
    hits = await find_nearby_fulfillers(session, latitude, longitude, radius)
    return [
        NearbyFulfillerRead(**loc.model_dump(), distance_km=round(dist, 3))
        for loc, dist in hits
    ]
