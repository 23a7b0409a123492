"""
Address geocoding against a Nominatim-compatible HTTP API.

Best effort: callers treat ``UpstreamUnavailable`` as "location unknown".
"""

from __future__ import annotations

from functools import lru_cache

import httpx
import structlog

from app.core.config import get_settings
from app.core.errors import UpstreamUnavailable

log = structlog.get_logger()


class Geocoder:
    """Resolve free-text addresses to (latitude, longitude)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        user_agent: str = "checkin-buddy",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    async def geocode(self, address: str) -> tuple[float, float] | None:
        """Return the best match, or None when the address is unknown.

        Raises UpstreamUnavailable on transport errors, non-2xx responses
        and malformed payloads.
        """
        params = {"q": address, "format": "json", "limit": 1}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            ) as client:
                resp = await client.get(self.base_url, params=params)
                resp.raise_for_status()
                results = resp.json()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Geocoder request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamUnavailable("Geocoder returned invalid JSON") from exc

        if not isinstance(results, list):
            raise UpstreamUnavailable("Geocoder returned an unexpected payload")
        if not results:
            return None

        try:
            lat = float(results[0]["lat"])
            lon = float(results[0]["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailable("Geocoder result is missing coordinates") from exc

        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            raise UpstreamUnavailable("Geocoder returned out-of-range coordinates")
        return lat, lon


@lru_cache
def get_geocoder() -> Geocoder:
    settings = get_settings()
    return Geocoder(
        settings.geocoder_url,
        timeout=settings.geocoder_timeout_seconds,
        user_agent=settings.geocoder_user_agent,
    )
