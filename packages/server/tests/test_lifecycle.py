"""
Tests for the request lifecycle.

Covers:
- Transition table conformance for every (status, role, target)
- Rejected transitions leave the row untouched
- Authorization: only the bound creator / bound fulfiller may act
- Milestone timestamps and cancellation reasons
- Expiry sweep and the expiry-then-claim scenario
- Concurrent transitions on one request
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta

import pytest

from app.core.errors import AccessDenied, IllegalTransition, NotFound
from app.models.base import as_utc, utcnow
from app.services.lifecycle import (
    TRANSITIONS,
    allowed_targets,
    cancel_request,
    check_transition,
    complete_request,
    expire_overdue,
    start_request,
    transition_request,
)
from app.services.matching import claim
from app.services.request_store import get_request
from checkin_shared.schemas.common import TERMINAL_STATUSES, ActorRole, RequestStatus

S = RequestStatus
C = ActorRole.CREATOR
F = ActorRole.FULFILLER


# ---------------------------------------------------------------------------
# Unit tests: the table
# ---------------------------------------------------------------------------


class TestTransitionTable:
    def test_terminal_statuses_have_no_moves(self):
        for status, role in itertools.product(TERMINAL_STATUSES, ActorRole):
            assert allowed_targets(status, role) == frozenset()

    def test_creator_can_only_cancel(self):
        for status in (S.PENDING, S.ACCEPTED):
            assert allowed_targets(status, C) == {S.CANCELLED_BY_CREATOR}
        assert allowed_targets(S.IN_PROGRESS, C) == frozenset()

    def test_fulfiller_moves(self):
        assert allowed_targets(S.ACCEPTED, F) == {S.IN_PROGRESS, S.CANCELLED_BY_FULFILLER}
        assert allowed_targets(S.IN_PROGRESS, F) == {S.COMPLETED, S.CANCELLED_BY_FULFILLER}

    def test_every_listed_pair_is_accepted_and_all_others_rejected(self):
        for status, role, target in itertools.product(S, ActorRole, S):
            listed = target in TRANSITIONS.get((status, role), frozenset())
            if listed and target != S.ACCEPTED:
                check_transition(status, role, target)
            else:
                with pytest.raises(IllegalTransition):
                    check_transition(status, role, target)

    def test_accept_via_transition_points_to_claim(self):
        with pytest.raises(IllegalTransition) as exc_info:
            check_transition(S.PENDING, F, S.ACCEPTED)
        assert "claim" in exc_info.value.message

    def test_error_names_current_attempted_and_allowed(self):
        with pytest.raises(IllegalTransition) as exc_info:
            check_transition(S.ACCEPTED, F, S.COMPLETED)
        details = exc_info.value.details
        assert details["current_status"] == "accepted"
        assert details["attempted_status"] == "completed"
        assert details["allowed"] == ["cancelled_by_fulfiller", "in_progress"]

    def test_terminal_status_error_says_so(self):
        for status in TERMINAL_STATUSES:
            with pytest.raises(IllegalTransition) as exc_info:
                check_transition(status, C, S.CANCELLED_BY_CREATOR)
            assert "no further transitions" in exc_info.value.message
            assert exc_info.value.details["allowed"] == []


# ---------------------------------------------------------------------------
# Service tests
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.asyncio
    async def test_full_happy_path_sets_milestones(self, session, make_request):
        req = await make_request()
        req = await claim(session, req.id, "fulfiller-1")
        await session.commit()
        assert req.status == "accepted"
        assert req.accepted_at is not None

        req = await start_request(session, req.id, "fulfiller-1")
        assert req.status == "in_progress"
        assert req.started_at is not None

        req = await complete_request(session, req.id, "fulfiller-1")
        await session.commit()
        assert req.status == "completed"
        assert req.completed_at is not None
        assert req.cancellation_reason is None

    @pytest.mark.asyncio
    async def test_illegal_transition_leaves_row_unmutated(self, session, make_request):
        req = await make_request(status="accepted", fulfiller_id="fulfiller-1")
        before = await get_request(session, req.id)
        status_before, updated_before = before.status, before.updated_at

        with pytest.raises(IllegalTransition):
            await transition_request(session, req.id, "fulfiller-1", F, S.COMPLETED)
        await session.commit()

        after = await get_request(session, req.id)
        assert after.status == status_before
        assert after.updated_at == updated_before

    @pytest.mark.asyncio
    async def test_terminal_request_rejects_everything(self, session, make_request):
        req = await make_request(status="completed", fulfiller_id="fulfiller-1")
        for target in S:
            with pytest.raises(IllegalTransition):
                await transition_request(session, req.id, "fulfiller-1", F, target)

    @pytest.mark.asyncio
    async def test_creator_cancel_records_reason(self, session, make_request):
        req = await make_request()
        req = await cancel_request(session, req.id, "creator-1", C, reason="Guest delayed")
        assert req.status == "cancelled_by_creator"
        assert req.cancellation_reason == "Guest delayed"
        assert req.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_fulfiller_cancel_in_progress(self, session, make_request):
        req = await make_request(status="in_progress", fulfiller_id="fulfiller-1")
        req = await cancel_request(session, req.id, "fulfiller-1", F, reason="Car broke down")
        assert req.status == "cancelled_by_fulfiller"

    @pytest.mark.asyncio
    async def test_reason_ignored_for_non_cancel(self, session, make_request):
        req = await make_request(status="accepted", fulfiller_id="fulfiller-1")
        req = await transition_request(
            session, req.id, "fulfiller-1", F, S.IN_PROGRESS, reason="ignored"
        )
        assert req.cancellation_reason is None

    @pytest.mark.asyncio
    async def test_missing_request(self, session):
        import uuid

        with pytest.raises(NotFound):
            await start_request(session, uuid.uuid4(), "fulfiller-1")


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_other_creator_cannot_cancel(self, session, make_request):
        req = await make_request()
        with pytest.raises(AccessDenied):
            await cancel_request(session, req.id, "creator-2", C)

    @pytest.mark.asyncio
    async def test_unbound_fulfiller_cannot_start(self, session, make_request):
        req = await make_request(status="accepted", fulfiller_id="fulfiller-1")
        with pytest.raises(AccessDenied):
            await start_request(session, req.id, "fulfiller-2")

    @pytest.mark.asyncio
    async def test_creator_id_acting_as_fulfiller_is_denied(self, session, make_request):
        req = await make_request(status="accepted", fulfiller_id="fulfiller-1")
        with pytest.raises(AccessDenied):
            await transition_request(session, req.id, "creator-1", F, S.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_fulfiller_cannot_touch_unclaimed_request(self, session, make_request):
        req = await make_request()
        with pytest.raises(AccessDenied):
            await cancel_request(session, req.id, "fulfiller-1", F)

    @pytest.mark.asyncio
    async def test_access_checked_before_legality(self, session, make_request):
        req = await make_request(status="completed", fulfiller_id="fulfiller-1")
        with pytest.raises(AccessDenied):
            await cancel_request(session, req.id, "creator-2", C)


class TestConcurrentTransitions:
    @pytest.mark.asyncio
    async def test_cancel_and_start_race_has_one_winner(self, session_factory, make_request):
        req = await make_request(status="accepted", fulfiller_id="fulfiller-1")

        async def attempt(fn, *args):
            async with session_factory() as s:
                try:
                    result = await fn(s, req.id, *args)
                    await s.commit()
                    return result.status
                except IllegalTransition:
                    await s.rollback()
                    return None

        results = await asyncio.gather(
            attempt(start_request, "fulfiller-1"),
            attempt(cancel_request, "creator-1", C),
        )
        winners = [r for r in results if r is not None]
        assert len(winners) == 1

        async with session_factory() as s:
            final = await get_request(s, req.id)
        assert final.status == winners[0]


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expires_only_overdue_pending(self, session, make_request):
        now = utcnow()
        overdue = await make_request(scheduled_at=now - timedelta(minutes=1))
        unpaid_overdue = await make_request(
            scheduled_at=now - timedelta(hours=1), payment_status="pending"
        )
        future = await make_request(scheduled_at=now + timedelta(hours=1))
        accepted_overdue = await make_request(
            scheduled_at=now - timedelta(hours=1), status="accepted", fulfiller_id="f-9"
        )

        count = await expire_overdue(session, now=now)
        await session.commit()
        assert count == 2

        statuses = {
            r.id: (await get_request(session, r.id)).status
            for r in (overdue, unpaid_overdue, future, accepted_overdue)
        }
        assert statuses[overdue.id] == "expired"
        assert statuses[unpaid_overdue.id] == "expired"
        assert statuses[future.id] == "pending"
        assert statuses[accepted_overdue.id] == "accepted"

    @pytest.mark.asyncio
    async def test_expiry_is_idempotent(self, session, make_request):
        now = utcnow()
        await make_request(scheduled_at=now - timedelta(minutes=5))
        assert await expire_overdue(session, now=now) == 1
        await session.commit()
        assert await expire_overdue(session, now=now) == 0

    @pytest.mark.asyncio
    async def test_claim_after_expiry_is_not_found(self, session, make_request):
        now = utcnow()
        req = await make_request(scheduled_at=now + timedelta(minutes=1))
        later = now + timedelta(minutes=2)

        assert await expire_overdue(session, now=later) == 1
        await session.commit()

        with pytest.raises(NotFound):
            await claim(session, req.id, "fulfiller-1", now=later)
        fresh = await get_request(session, req.id)
        assert fresh.status == "expired"
        assert fresh.fulfiller_id is None

    @pytest.mark.asyncio
    async def test_claim_past_scheduled_time_before_sweep(self, session, make_request):
        now = utcnow()
        req = await make_request(scheduled_at=now + timedelta(minutes=1))
        with pytest.raises(NotFound):
            await claim(session, req.id, "fulfiller-1", now=now + timedelta(minutes=2))
        fresh = await get_request(session, req.id)
        assert fresh.status == "pending"
        assert as_utc(fresh.scheduled_at) < now + timedelta(minutes=2)
