"""
Request lifecycle: the transition table, role-scoped transitions, expiry,
and payment signals.

The legal moves are data (``TRANSITIONS``), not control flow:

    pending      creator   -> cancelled_by_creator
                 fulfiller -> accepted (claim only)
    accepted     creator   -> cancelled_by_creator
                 fulfiller -> in_progress, cancelled_by_fulfiller
    in_progress  fulfiller -> completed, cancelled_by_fulfiller

Requests in ``TERMINAL_STATUSES`` (completed, cancelled, expired) never move
again. Every write is a conditional update keyed on the status observed at
validation time, so two concurrent transitions on one request are serialized
by the database.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AccessDenied, IllegalTransition, NotFound
from app.models.base import utcnow
from app.models.check_in_request import CheckInRequest
from app.services.request_store import conditional_update, get_request, get_request_or_404
from checkin_shared.schemas.common import (
    TERMINAL_STATUSES,
    ActorRole,
    PaymentOutcome,
    PaymentStatus,
    RequestStatus,
)

log = structlog.get_logger()

S = RequestStatus

TRANSITIONS: dict[tuple[RequestStatus, ActorRole], frozenset[RequestStatus]] = {
    (S.PENDING, ActorRole.CREATOR): frozenset({S.CANCELLED_BY_CREATOR}),
    (S.PENDING, ActorRole.FULFILLER): frozenset({S.ACCEPTED}),
    (S.ACCEPTED, ActorRole.CREATOR): frozenset({S.CANCELLED_BY_CREATOR}),
    (S.ACCEPTED, ActorRole.FULFILLER): frozenset({S.IN_PROGRESS, S.CANCELLED_BY_FULFILLER}),
    (S.IN_PROGRESS, ActorRole.FULFILLER): frozenset({S.COMPLETED, S.CANCELLED_BY_FULFILLER}),
}

# Reachable only through matching.claim, never through transition_request.
CLAIM_ONLY_TARGETS = frozenset({S.ACCEPTED})

CANCELLATION_TARGETS = frozenset({S.CANCELLED_BY_CREATOR, S.CANCELLED_BY_FULFILLER})

# Timestamp column stamped when a request enters the status.
MILESTONES: dict[RequestStatus, str] = {
    S.ACCEPTED: "accepted_at",
    S.IN_PROGRESS: "started_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED_BY_CREATOR: "cancelled_at",
    S.CANCELLED_BY_FULFILLER: "cancelled_at",
}

PAYMENT_FAILED_REASON = "Payment failed"


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------


def allowed_targets(status: RequestStatus, role: ActorRole) -> frozenset[RequestStatus]:
    return TRANSITIONS.get((status, role), frozenset())


def is_allowed(status: RequestStatus, role: ActorRole, target: RequestStatus) -> bool:
    return target in allowed_targets(status, role)


def check_transition(status: RequestStatus, role: ActorRole, target: RequestStatus) -> None:
    """Raise IllegalTransition unless ``role`` may move ``status`` -> ``target`` directly."""
    if status in TERMINAL_STATUSES:
        raise IllegalTransition(
            status.value,
            target.value,
            [],
            message=f"Request is {status.value}; no further transitions are possible",
        )
    allowed = sorted(t.value for t in allowed_targets(status, role) - CLAIM_ONLY_TARGETS)
    if target in CLAIM_ONLY_TARGETS and is_allowed(status, role, target):
        raise IllegalTransition(
            status.value,
            target.value,
            allowed,
            message=f"'{target.value}' is reached only by claiming the request",
        )
    if not is_allowed(status, role, target):
        raise IllegalTransition(status.value, target.value, allowed)


def authorize(req: CheckInRequest, actor_id: str, role: ActorRole) -> None:
    """Only the bound creator (as creator) or bound fulfiller (as fulfiller) may act."""
    if role == ActorRole.CREATOR and req.creator_id == actor_id:
        return
    if role == ActorRole.FULFILLER and req.fulfiller_id is not None and req.fulfiller_id == actor_id:
        return
    raise AccessDenied("Not a party to this check-in request", request_id=str(req.id))


def split_fee(fee: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """(platform_fee, fulfiller_payout); the payout absorbs rounding."""
    platform_fee = (Decimal(fee) * Decimal(rate)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return platform_fee, Decimal(fee) - platform_fee


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def transition_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    actor_id: str,
    role: ActorRole,
    target: RequestStatus,
    reason: Optional[str] = None,
    *,
    now: datetime | None = None,
) -> CheckInRequest:
    now = now or utcnow()
    req = await get_request_or_404(session, request_id)
    authorize(req, actor_id, role)

    current = RequestStatus(req.status)
    check_transition(current, role, target)

    values: dict = {"status": target.value, "updated_at": now}
    if target in MILESTONES:
        values[MILESTONES[target]] = now
    if target in CANCELLATION_TARGETS:
        values["cancellation_reason"] = reason

    party = CheckInRequest.creator_id if role == ActorRole.CREATOR else CheckInRequest.fulfiller_id
    affected = await conditional_update(
        session,
        req.id,
        CheckInRequest.status == current.value,
        party == actor_id,
        **values,
    )
    fresh = await get_request(session, req.id)
    if affected != 1:
        if fresh is None:
            raise NotFound("Check-in request not found", request_id=str(request_id))
        # A concurrent transition moved the request first.
        log.info(
            "request.transition_conflict",
            request_id=str(req.id),
            expected=current.value,
            actual=fresh.status,
            target=target.value,
        )
        now_status = RequestStatus(fresh.status)
        raise IllegalTransition(
            now_status.value,
            target.value,
            sorted(t.value for t in allowed_targets(now_status, role) - CLAIM_ONLY_TARGETS),
        )

    log.info(
        "request.transitioned",
        request_id=str(req.id),
        from_status=current.value,
        to_status=target.value,
        actor_id=actor_id,
        role=role.value,
    )
    return fresh


async def start_request(
    session: AsyncSession, request_id: uuid.UUID, fulfiller_id: str, **kw
) -> CheckInRequest:
    return await transition_request(
        session, request_id, fulfiller_id, ActorRole.FULFILLER, S.IN_PROGRESS, **kw
    )


async def complete_request(
    session: AsyncSession, request_id: uuid.UUID, fulfiller_id: str, **kw
) -> CheckInRequest:
    return await transition_request(
        session, request_id, fulfiller_id, ActorRole.FULFILLER, S.COMPLETED, **kw
    )


async def cancel_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    actor_id: str,
    role: ActorRole,
    reason: Optional[str] = None,
    **kw,
) -> CheckInRequest:
    target = S.CANCELLED_BY_CREATOR if role == ActorRole.CREATOR else S.CANCELLED_BY_FULFILLER
    return await transition_request(session, request_id, actor_id, role, target, reason, **kw)


async def mark_started_on_upload(
    session: AsyncSession, req: CheckInRequest, fulfiller_id: str, *, now: datetime
) -> bool:
    """Implicit accepted -> in_progress on the bound fulfiller's first upload."""
    affected = await conditional_update(
        session,
        req.id,
        CheckInRequest.status == S.ACCEPTED.value,
        CheckInRequest.fulfiller_id == fulfiller_id,
        status=S.IN_PROGRESS.value,
        started_at=now,
        updated_at=now,
    )
    if affected:
        log.info("request.started_by_upload", request_id=str(req.id), fulfiller_id=fulfiller_id)
    return bool(affected)


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


async def expire_overdue(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Expire every pending request whose scheduled time has passed.

    One statement, so a concurrent claim either lands first (the row is no
    longer pending) or finds the row already expired.
    """
    now = now or utcnow()
    count = await conditional_update(
        session,
        None,
        CheckInRequest.status == S.PENDING.value,
        CheckInRequest.scheduled_at < now,
        status=S.EXPIRED.value,
        updated_at=now,
    )
    if count:
        log.info("request.batch_expired", count=count)
    return count


# ---------------------------------------------------------------------------
# Payment signal
# ---------------------------------------------------------------------------


async def apply_payment_signal(
    session: AsyncSession,
    request_id: uuid.UUID,
    outcome: PaymentOutcome,
    *,
    now: datetime | None = None,
) -> tuple[CheckInRequest, bool]:
    """Apply a gateway outcome. Returns (request, applied).

    Each outcome is guarded on the payment states it may leave, so replays
    and out-of-order deliveries affect zero rows.
    """
    now = now or utcnow()
    req = await get_request_or_404(session, request_id)
    if outcome == PaymentOutcome.SUCCEEDED:
        platform_fee, payout = split_fee(req.fee, req.platform_fee_rate)
        affected = await conditional_update(
            session,
            req.id,
            CheckInRequest.payment_status.in_(
                [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]
            ),
            payment_status=PaymentStatus.SUCCEEDED.value,
            platform_fee=platform_fee,
            fulfiller_payout=payout,
            payment_failure_reason=None,
            updated_at=now,
        )
    elif outcome == PaymentOutcome.FAILED:
        affected = await conditional_update(
            session,
            req.id,
            CheckInRequest.payment_status == PaymentStatus.PENDING.value,
            payment_status=PaymentStatus.FAILED.value,
            payment_failure_reason=PAYMENT_FAILED_REASON,
            updated_at=now,
        )
    else:
        # Refunds leave the request status alone, including in-flight work.
        affected = await conditional_update(
            session,
            req.id,
            CheckInRequest.payment_status == PaymentStatus.SUCCEEDED.value,
            payment_status=PaymentStatus.REFUNDED.value,
            updated_at=now,
        )

    fresh = await get_request_or_404(session, req.id)
    if affected:
        log.info(
            "request.payment_updated",
            request_id=str(req.id),
            outcome=outcome.value,
            status=fresh.status,
        )
    else:
        log.info(
            "request.payment_signal_ignored",
            request_id=str(req.id),
            outcome=outcome.value,
            payment_status=fresh.payment_status,
        )
    return fresh, bool(affected)
