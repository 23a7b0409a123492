"""Fulfiller presence: last known position and availability."""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.base import utcnow
from app.models.fulfiller_location import FulfillerLocation
from app.services import geo
from checkin_shared.schemas.requests import FulfillerLocationUpdate

log = structlog.get_logger()


async def update_location(
    session: AsyncSession,
    fulfiller_id: str,
    update: FulfillerLocationUpdate,
    *,
    now: datetime | None = None,
) -> FulfillerLocation:
    """Upsert the caller's own location row."""
    geo.validate_point(update.latitude, update.longitude)
    now = now or utcnow()

    loc = await session.get(FulfillerLocation, fulfiller_id)
    if loc is None:
        loc = FulfillerLocation(fulfiller_id=fulfiller_id, latitude=0.0, longitude=0.0)
        session.add(loc)
    loc.latitude = update.latitude
    loc.longitude = update.longitude
    loc.is_available = update.is_available
    loc.updated_at = now
    await session.flush()

    log.debug("fulfiller.location_updated", fulfiller_id=fulfiller_id, available=update.is_available)
    return loc


async def find_nearby_fulfillers(
    session: AsyncSession,
    latitude: float,
    longitude: float,
    radius_km: float,
    *,
    now: datetime | None = None,
) -> list[tuple[FulfillerLocation, float]]:
    settings = get_settings()
    geo.validate_point(latitude, longitude)
    geo.validate_radius(radius_km, settings.max_search_radius_km)
    return await geo.nearby_active_fulfillers(
        session,
        latitude,
        longitude,
        radius_km,
        now=now or utcnow(),
        max_age=timedelta(minutes=settings.fulfiller_location_max_age_minutes),
        limit=settings.nearby_result_limit,
    )
