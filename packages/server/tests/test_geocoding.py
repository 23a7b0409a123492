"""
Tests for the HTTP geocoder (httpx MockTransport, no network).
"""

from __future__ import annotations

import httpx
import pytest

from app.core.errors import UpstreamUnavailable
from app.core.geocoding import Geocoder

BASE_URL = "https://geocoder.test/search"


def _geocoder(handler) -> Geocoder:
    return Geocoder(BASE_URL, transport=httpx.MockTransport(handler))


class TestGeocoder:
    @pytest.mark.asyncio
    async def test_best_match(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["agent"] = request.headers["User-Agent"]
            return httpx.Response(200, json=[{"lat": "52.3791", "lon": "4.9003"}, {"lat": "0", "lon": "0"}])

        point = await _geocoder(handler).geocode("Damrak 1, Amsterdam")
        assert point == (52.3791, 4.9003)
        assert seen["params"] == {"q": "Damrak 1, Amsterdam", "format": "json", "limit": "1"}
        assert seen["agent"] == "checkin-buddy"

    @pytest.mark.asyncio
    async def test_unknown_address(self):
        point = await _geocoder(lambda request: httpx.Response(200, json=[])).geocode("nowhere")
        assert point is None

    @pytest.mark.asyncio
    async def test_server_error(self):
        with pytest.raises(UpstreamUnavailable):
            await _geocoder(lambda request: httpx.Response(500)).geocode("x")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamUnavailable):
            await _geocoder(handler).geocode("x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, content=b"<html>"),
            httpx.Response(200, json={"lat": "1", "lon": "2"}),
            httpx.Response(200, json=[{"display_name": "no coordinates"}]),
            httpx.Response(200, json=[{"lat": "95.0", "lon": "2"}]),
        ],
    )
    async def test_malformed_payloads(self, response):
        with pytest.raises(UpstreamUnavailable):
            await _geocoder(lambda request: response).geocode("x")
