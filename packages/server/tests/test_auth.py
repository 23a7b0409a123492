"""
Tests for authentication and authorization.

Covers:
- JWT creation and verification
- Bearer dependency: missing, invalid, role-less tokens
- Role dependencies (require_creator, require_fulfiller)
- Shared-secret dependencies (gateway callback, maintenance)
- Security headers middleware
"""

from __future__ import annotations

from datetime import timedelta

import jwt as pyjwt
import pytest
from fastapi import FastAPI
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from app.core.auth import (
    Actor,
    create_jwt,
    decode_jwt,
    get_current_actor,
    require_creator,
    require_fulfiller,
    require_gateway,
    require_maintenance,
)
from app.core.config import get_settings
from app.core.errors import AccessDenied, AuthenticationRequired
from app.core.middleware import SECURITY_HEADERS, SecurityHeadersMiddleware
from checkin_shared.schemas.common import ActorRole


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ---------------------------------------------------------------------------
# Unit Tests: JWT
# ---------------------------------------------------------------------------

class TestJWT:
    def test_create_and_decode(self):
        token = create_jwt("host-42", ActorRole.CREATOR)
        payload = decode_jwt(token)
        assert payload["sub"] == "host-42"
        assert payload["role"] == "creator"
        assert "jti" in payload

    def test_expired_jwt_raises(self):
        token = create_jwt("host-42", ActorRole.CREATOR, expires_delta=timedelta(seconds=-1))
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_jwt(token)

    def test_foreign_signature_raises(self):
        settings = get_settings()
        forged = pyjwt.encode(
            {"sub": "host-42", "role": "creator"},
            "some-other-signing-key-0123456789abcdef",
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(pyjwt.InvalidSignatureError):
            decode_jwt(forged)

    def test_tampered_jwt_raises(self):
        token = create_jwt("host-42", ActorRole.CREATOR)
        tampered = token[:-5] + "XXXXX"
        with pytest.raises(pyjwt.PyJWTError):
            decode_jwt(tampered)

    @pytest.mark.asyncio
    async def test_tampered_token_is_unauthenticated(self):
        tampered = create_jwt("host-42", ActorRole.CREATOR)[:-5] + "XXXXX"
        with pytest.raises(AuthenticationRequired):
            await get_current_actor(_bearer(tampered))


# ---------------------------------------------------------------------------
# Unit Tests: bearer dependency
# ---------------------------------------------------------------------------

class TestCurrentActor:
    @pytest.mark.asyncio
    async def test_valid_token(self):
        actor = await get_current_actor(_bearer(create_jwt("agent-7", ActorRole.FULFILLER)))
        assert actor.actor_id == "agent-7"
        assert actor.role == ActorRole.FULFILLER

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(AuthenticationRequired) as exc_info:
            await get_current_actor(None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    @pytest.mark.asyncio
    async def test_expired_token(self):
        token = create_jwt("agent-7", ActorRole.FULFILLER, expires_delta=timedelta(seconds=-1))
        with pytest.raises(AuthenticationRequired):
            await get_current_actor(_bearer(token))

    @pytest.mark.asyncio
    async def test_unknown_role(self):
        settings = get_settings()
        token = pyjwt.encode(
            {"sub": "x", "role": "admin"}, settings.secret_key, algorithm=settings.jwt_algorithm
        )
        with pytest.raises(AuthenticationRequired):
            await get_current_actor(_bearer(token))

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        settings = get_settings()
        token = pyjwt.encode(
            {"role": "creator"}, settings.secret_key, algorithm=settings.jwt_algorithm
        )
        with pytest.raises(AuthenticationRequired):
            await get_current_actor(_bearer(token))


# ---------------------------------------------------------------------------
# Unit Tests: role and secret dependencies
# ---------------------------------------------------------------------------

class TestAuthorizationMatrix:
    @pytest.mark.asyncio
    async def test_creator_role(self):
        host = Actor("h", ActorRole.CREATOR)
        assert await require_creator(host) is host
        with pytest.raises(AccessDenied) as exc_info:
            await require_fulfiller(host)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_fulfiller_role(self):
        agent = Actor("a", ActorRole.FULFILLER)
        assert await require_fulfiller(agent) is agent
        with pytest.raises(AccessDenied):
            await require_creator(agent)

    @pytest.mark.asyncio
    async def test_gateway_secret(self):
        await require_gateway("gateway-secret")
        for bad in (None, "", "gateway-secret-2"):
            with pytest.raises(AuthenticationRequired):
                await require_gateway(bad)

    @pytest.mark.asyncio
    async def test_maintenance_secret(self):
        await require_maintenance("maintenance-secret")
        with pytest.raises(AuthenticationRequired):
            await require_maintenance("gateway-secret")


# ---------------------------------------------------------------------------
# Integration Tests: Middleware
# ---------------------------------------------------------------------------

class TestSecurityHeadersMiddleware:
    def test_headers_present(self):
        app = FastAPI()
        app.add_middleware(SecurityHeadersMiddleware)

        @app.get("/test")
        async def test_endpoint():
            return {"ok": True}

        client = TestClient(app)
        resp = client.get("/test")
        assert resp.status_code == 200
        for header, value in SECURITY_HEADERS.items():
            assert resp.headers.get(header) == value
