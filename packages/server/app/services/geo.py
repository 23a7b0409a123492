"""
GeoIndex: point-in-radius lookups for open requests and active fulfillers.

Two execution paths with the same contract (nearest first, distance in km,
radius inclusive):

- PostgreSQL: PostGIS ``ST_DWithin`` / ``ST_Distance`` over the generated
  ``location geography(Point, 4326)`` columns (GiST indexed).
- Any other backend: a latitude/longitude bounding-box prefilter in SQL,
  then exact haversine distances ranked in Python.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ValidationError
from app.models.check_in_request import CheckInRequest
from app.models.fulfiller_location import FulfillerLocation
from checkin_shared.schemas.common import PaymentStatus, RequestStatus

EARTH_RADIUS_KM = 6371.0088


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two WGS84 points, in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(
    latitude: float, longitude: float, radius_km: float
) -> tuple[float, float, float | None, float | None]:
    """(min_lat, max_lat, min_lon, max_lon) enclosing the search circle.

    Longitude bounds are None when the circle reaches a pole or crosses the
    antimeridian; the caller then filters on latitude only.
    """
    dlat = math.degrees(radius_km / EARTH_RADIUS_KM)
    min_lat, max_lat = latitude - dlat, latitude + dlat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return max(min_lat, -90.0), min(max_lat, 90.0), None, None

    dlon = math.degrees(radius_km / (EARTH_RADIUS_KM * math.cos(math.radians(latitude))))
    min_lon, max_lon = longitude - dlon, longitude + dlon
    if min_lon < -180.0 or max_lon > 180.0:
        return min_lat, max_lat, None, None
    return min_lat, max_lat, min_lon, max_lon


def validate_point(latitude: float, longitude: float) -> None:
    if not (-90.0 <= latitude <= 90.0):
        raise ValidationError("latitude must be within [-90, 90]", latitude=latitude)
    if not (-180.0 <= longitude <= 180.0):
        raise ValidationError("longitude must be within [-180, 180]", longitude=longitude)


def validate_radius(radius_km: float, max_radius_km: float) -> None:
    if not (0 < radius_km <= max_radius_km):
        raise ValidationError(
            f"radius_km must be greater than 0 and at most {max_radius_km}",
            radius_km=radius_km,
        )


def _is_postgres(session: AsyncSession) -> bool:
    return session.get_bind().dialect.name == "postgresql"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

_POSTGIS_NEARBY_REQUESTS = text(
    """
    SELECT id,
           ST_Distance(location, ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)::geography) AS distance_m
    FROM check_in_requests
    WHERE status = :status
      AND payment_status = :payment_status
      AND location IS NOT NULL
      AND scheduled_at > :now
      AND ST_DWithin(location, ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)::geography, :radius_m)
    ORDER BY distance_m ASC, scheduled_at ASC
    LIMIT :limit
    """
)


async def _load_in_order(
    session: AsyncSession, ranked: Sequence[tuple[uuid.UUID, float]]
) -> list[tuple[CheckInRequest, float]]:
    if not ranked:
        return []
    result = await session.execute(
        select(CheckInRequest).where(CheckInRequest.id.in_([rid for rid, _ in ranked]))
    )
    by_id = {r.id: r for r in result.scalars().all()}
    return [(by_id[rid], dist) for rid, dist in ranked if rid in by_id]


async def nearby_claimable_requests(
    session: AsyncSession,
    latitude: float,
    longitude: float,
    radius_km: float,
    *,
    now: datetime,
    limit: int = 50,
) -> list[tuple[CheckInRequest, float]]:
    """Pending, paid, located, future requests within ``radius_km``, nearest first."""
    if _is_postgres(session):
        result = await session.execute(
            _POSTGIS_NEARBY_REQUESTS,
            {
                "lat": latitude,
                "lon": longitude,
                "radius_m": radius_km * 1000.0,
                "status": RequestStatus.PENDING.value,
                "payment_status": PaymentStatus.SUCCEEDED.value,
                "now": now,
                "limit": limit,
            },
        )
        ranked = [(row.id, row.distance_m / 1000.0) for row in result.all()]
        return await _load_in_order(session, ranked)

    min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_km)
    stmt = select(CheckInRequest).where(
        CheckInRequest.status == RequestStatus.PENDING.value,
        CheckInRequest.payment_status == PaymentStatus.SUCCEEDED.value,
        CheckInRequest.latitude.is_not(None),
        CheckInRequest.longitude.is_not(None),
        CheckInRequest.scheduled_at > now,
        CheckInRequest.latitude.between(min_lat, max_lat),
    )
    if min_lon is not None:
        stmt = stmt.where(CheckInRequest.longitude.between(min_lon, max_lon))

    result = await session.execute(stmt)
    hits = []
    for req in result.scalars().all():
        dist = haversine_km(latitude, longitude, req.latitude, req.longitude)
        if dist <= radius_km:
            hits.append((req, dist))
    hits.sort(key=lambda h: (h[1], h[0].scheduled_at))
    return hits[:limit]


# ---------------------------------------------------------------------------
# Fulfillers
# ---------------------------------------------------------------------------

_POSTGIS_NEARBY_FULFILLERS = text(
    """
    SELECT fulfiller_id,
           ST_Distance(location, ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)::geography) AS distance_m
    FROM fulfiller_locations
    WHERE is_available
      AND updated_at >= :fresh_since
      AND ST_DWithin(location, ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)::geography, :radius_m)
    ORDER BY distance_m ASC
    LIMIT :limit
    """
)


async def nearby_active_fulfillers(
    session: AsyncSession,
    latitude: float,
    longitude: float,
    radius_km: float,
    *,
    now: datetime,
    max_age: timedelta,
    limit: int = 50,
) -> list[tuple[FulfillerLocation, float]]:
    """Available fulfillers with a fresh position within ``radius_km``, nearest first."""
    fresh_since = now - max_age

    if _is_postgres(session):
        result = await session.execute(
            _POSTGIS_NEARBY_FULFILLERS,
            {
                "lat": latitude,
                "lon": longitude,
                "radius_m": radius_km * 1000.0,
                "fresh_since": fresh_since,
                "limit": limit,
            },
        )
        ranked = [(row.fulfiller_id, row.distance_m / 1000.0) for row in result.all()]
        if not ranked:
            return []
        locs = await session.execute(
            select(FulfillerLocation).where(
                FulfillerLocation.fulfiller_id.in_([fid for fid, _ in ranked])
            )
        )
        by_id = {loc.fulfiller_id: loc for loc in locs.scalars().all()}
        return [(by_id[fid], dist) for fid, dist in ranked if fid in by_id]

    min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_km)
    stmt = select(FulfillerLocation).where(
        FulfillerLocation.is_available.is_(True),
        FulfillerLocation.updated_at >= fresh_since,
        FulfillerLocation.latitude.between(min_lat, max_lat),
    )
    if min_lon is not None:
        stmt = stmt.where(FulfillerLocation.longitude.between(min_lon, max_lon))

    result = await session.execute(stmt)
    hits = []
    for loc in result.scalars().all():
        dist = haversine_km(latitude, longitude, loc.latitude, loc.longitude)
        if dist <= radius_km:
            hits.append((loc, dist))
    hits.sort(key=lambda h: h[1])
    return hits[:limit]
