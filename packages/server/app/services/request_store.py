"""
Request store primitives.

All cross-request coordination goes through ``conditional_update``: a single
``UPDATE ... WHERE id = :id AND <predicate>`` whose affected-row count tells
the caller whether it won. No read-validate-write sequences, no locks.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.models.base import utcnow
from app.models.check_in_request import CheckInRequest


async def get_request(session: AsyncSession, request_id: uuid.UUID) -> CheckInRequest | None:
    """Fetch the current row, bypassing any stale copy in the identity map."""
    return await session.get(CheckInRequest, request_id, populate_existing=True)


async def get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> CheckInRequest:
    req = await get_request(session, request_id)
    if req is None:
        raise NotFound("Check-in request not found", request_id=str(request_id))
    return req


async def conditional_update(
    session: AsyncSession,
    request_id: uuid.UUID | None,
    *conditions: Any,
    **values: Any,
) -> int:
    """Apply ``values`` to rows matching ``conditions``; return the affected count.

    ``request_id=None`` targets every matching row (used by sweeps).
    ``updated_at`` is bumped unless the caller sets it.
    """
    values.setdefault("updated_at", utcnow())
    stmt = update(CheckInRequest)
    if request_id is not None:
        stmt = stmt.where(CheckInRequest.id == request_id)
    stmt = (
        stmt.where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount
