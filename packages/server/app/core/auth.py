"""
Authentication and authorization for Check-in Buddy.

Tokens are issued by the external identity provider; this service only
verifies them. A token carries:

- ``sub``: opaque actor id (bound as creator_id / fulfiller_id on requests)
- ``role``: ``creator`` (host) or ``fulfiller`` (agent)

Shared-secret headers protect the machine-to-machine endpoints (payment
gateway callback, sweep trigger).
"""

from __future__ import annotations

import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.errors import AccessDenied, AuthenticationRequired
from checkin_shared.schemas.common import ActorRole

log = structlog.get_logger()
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    actor_id: str,
    role: ActorRole,
    *,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT (dev tooling and tests; production tokens come from the IdP)."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": actor_id,
        "role": role.value,
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class Actor:
    """An authenticated party and the role it acts in."""

    def __init__(self, actor_id: str, role: ActorRole):
        self.actor_id = actor_id
        self.role = role

    def __repr__(self) -> str:
        return f"Actor({self.actor_id!r}, {self.role.value})"


def _unauthorized(message: str) -> AuthenticationRequired:
    return AuthenticationRequired(message)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """Main authentication dependency: verifies the bearer JWT."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")

    try:
        payload = decode_jwt(credentials.credentials)
    except jwt.PyJWTError:
        raise _unauthorized("Invalid or expired token")

    sub = payload.get("sub")
    try:
        role = ActorRole(payload.get("role"))
    except ValueError:
        raise _unauthorized("Token carries no valid role")
    if not sub:
        raise _unauthorized("Token carries no subject")

    return Actor(actor_id=str(sub), role=role)


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks)
# ---------------------------------------------------------------------------

async def require_creator(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Only hosts may call this endpoint."""
    if actor.role != ActorRole.CREATOR:
        raise AccessDenied("Creator role required")
    return actor


async def require_fulfiller(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Only agents may call this endpoint."""
    if actor.role != ActorRole.FULFILLER:
        raise AccessDenied("Fulfiller role required")
    return actor


# ---------------------------------------------------------------------------
# Shared-secret endpoints
# ---------------------------------------------------------------------------

def _secret_matches(given: str | None, expected: str) -> bool:
    if not given:
        return False
    return hmac.compare_digest(given.encode(), expected.encode())


async def require_gateway(
    x_gateway_secret: Optional[str] = Header(None),
) -> None:
    """Payment gateway callbacks carry the shared secret."""
    if not _secret_matches(x_gateway_secret, settings.payment_callback_secret):
        log.warning("auth.gateway_secret_rejected")
        raise _unauthorized("Invalid gateway secret")


async def require_maintenance(
    x_maintenance_secret: Optional[str] = Header(None),
) -> None:
    if not _secret_matches(x_maintenance_secret, settings.maintenance_secret):
        raise _unauthorized("Invalid maintenance secret")
