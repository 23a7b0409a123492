"""
Payment gateway callback.

The gateway may deliver outcomes more than once and out of order; only the
first delivery that matches a legal payment-state move has any effect.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.requests import to_read
from app.core.auth import require_gateway
from app.core.database import get_session
from app.core.events import publish_event
from app.services.lifecycle import apply_payment_signal
from checkin_shared.schemas.requests import CheckInRequestRead, PaymentSignal

router = APIRouter()


@router.post("/callback", response_model=CheckInRequestRead, dependencies=[Depends(require_gateway)])
async def payment_callback_endpoint(
    body: PaymentSignal,
    session: AsyncSession = Depends(get_session),
):
    req, applied = await apply_payment_signal(session, body.request_id, body.outcome)
    await session.commit()

    if applied:
        await publish_event(
            "request.payment_updated",
            {
                "request_id": str(req.id),
                "status": req.status,
                "payment_status": req.payment_status,
                "outcome": body.outcome.value,
            },
        )
    return to_read(req)
