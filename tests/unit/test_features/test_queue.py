"""Unit tests for the durable dispatch queue."""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, time, timedelta

import pytest

from notify_service.features.notifications.exceptions import InvalidTransition
from notify_service.features.notifications.models import RecipientPreference
from notify_service.features.notifications.repository import get_delivery_event_repository

NOW = datetime(2026, 3, 10, 10, 15, tzinfo=UTC)


async def _event_types(session, entry_id) -> Counter:
    events = await get_delivery_event_repository().list_for_entry(session, entry_id)
    return Counter(event.event_type for event in events)


async def _stored(session, make_entry, **overrides):
    entry = make_entry(**overrides)
    session.add(entry)
    await session.flush()
    return entry


# ============================================================================
# Enqueue
# ============================================================================


@pytest.mark.unit
class TestEnqueue:
    """Test suite for DispatchQueue.enqueue."""

    @pytest.mark.asyncio
    async def test_enqueue_records_queued_event(self, db_session, dispatch_queue, make_entry):
        entry, created = await dispatch_queue.enqueue(db_session, make_entry())

        assert created is True
        assert entry.status == "pending"
        assert await _event_types(db_session, entry.id) == Counter({"queued": 1})

    @pytest.mark.asyncio
    async def test_duplicate_key_returns_existing(self, db_session, dispatch_queue, make_entry):
        first, _ = await dispatch_queue.enqueue(db_session, make_entry(idempotency_key="order-1"))
        second, created = await dispatch_queue.enqueue(
            db_session, make_entry(idempotency_key="order-1")
        )

        assert created is False
        assert second.id == first.id
        assert (await dispatch_queue.counts(db_session, "acme"))["pending"] == 1
        assert await _event_types(db_session, first.id) == Counter({"queued": 1})

    @pytest.mark.asyncio
    async def test_duplicate_reschedules_pending_entry(self, db_session, dispatch_queue, make_entry):
        later = NOW + timedelta(hours=2)
        await dispatch_queue.enqueue(db_session, make_entry(idempotency_key="order-1"))

        entry, created = await dispatch_queue.enqueue(
            db_session, make_entry(idempotency_key="order-1", next_eligible_at=later, priority=3)
        )

        assert created is False
        assert entry.next_eligible_at == later
        assert entry.priority == 3

    @pytest.mark.asyncio
    async def test_same_key_different_tenants(self, db_session, dispatch_queue, make_entry):
        _, first = await dispatch_queue.enqueue(db_session, make_entry(idempotency_key="k"))
        _, second = await dispatch_queue.enqueue(
            db_session, make_entry(idempotency_key="k", tenant_id="globex")
        )
        assert first and second

    @pytest.mark.asyncio
    async def test_terminal_entry_is_not_rescheduled(self, db_session, dispatch_queue, make_entry):
        await _stored(db_session, make_entry, idempotency_key="k", status="delivered")

        entry, created = await dispatch_queue.enqueue(
            db_session, make_entry(idempotency_key="k", next_eligible_at=NOW + timedelta(days=1))
        )

        assert created is False
        assert entry.status == "delivered"
        assert entry.next_eligible_at == NOW


# ============================================================================
# Claim
# ============================================================================


@pytest.mark.unit
class TestClaimBatch:
    """Test suite for DispatchQueue.claim_batch."""

    @pytest.mark.asyncio
    async def test_claims_by_priority_then_eligibility(self, db_session, dispatch_queue, make_entry):
        low = await _stored(db_session, make_entry, priority=0)
        urgent = await _stored(db_session, make_entry, priority=3)
        normal_early = await _stored(
            db_session, make_entry, priority=1, next_eligible_at=NOW - timedelta(minutes=5)
        )
        normal = await _stored(db_session, make_entry, priority=1)

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert [e.id for e in claimed] == [urgent.id, normal_early.id, normal.id, low.id]

    @pytest.mark.asyncio
    async def test_claim_marks_in_flight(self, db_session, dispatch_queue, make_entry):
        await _stored(db_session, make_entry)

        (entry,) = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert entry.status == "in_flight"
        assert entry.claimed_by == "w-1"
        assert entry.claimed_until == NOW + timedelta(seconds=60)
        assert entry.attempt_count == 1

    @pytest.mark.asyncio
    async def test_future_entries_and_limit(self, db_session, dispatch_queue, make_entry):
        await _stored(db_session, make_entry, next_eligible_at=NOW + timedelta(minutes=1))
        for _ in range(3):
            await _stored(db_session, make_entry)

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 2, visibility_timeout=60, now=NOW
        )
        again = await dispatch_queue.claim_batch(
            db_session, "w-2", 10, visibility_timeout=60, now=NOW
        )

        assert len(claimed) == 2
        assert len(again) == 1
        assert {e.id for e in claimed}.isdisjoint({e.id for e in again})

    @pytest.mark.asyncio
    async def test_expired_entries_fail(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(db_session, make_entry, expires_at=NOW - timedelta(seconds=1))

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert claimed == []
        await db_session.refresh(entry)
        assert entry.status == "failed"
        assert entry.failure_reason == "expired"
        assert await _event_types(db_session, entry.id) == Counter({"expired": 1})

    @pytest.mark.asyncio
    async def test_rate_limited_entry_is_deferred(
        self, db_session, dispatch_queue, make_entry, tenant_config
    ):
        await tenant_config(channel_rate_limits={"sms": {"hour": 1}})
        first = await _stored(db_session, make_entry, next_eligible_at=NOW - timedelta(minutes=1))
        second = await _stored(db_session, make_entry)

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert [e.id for e in claimed] == [first.id]
        await db_session.refresh(second)
        assert second.status == "pending"
        assert second.next_eligible_at == datetime(2026, 3, 10, 11, tzinfo=UTC)
        assert second.deferral_count == 1
        assert second.attempt_count == 0
        assert await _event_types(db_session, second.id) == Counter({"rate_limited": 1})

    @pytest.mark.asyncio
    async def test_deferral_budget_exhausted_goes_dead(
        self, db_session, dispatch_queue, make_entry, tenant_config
    ):
        await tenant_config(channel_rate_limits={"sms": {"hour": 0}})
        entry = await _stored(db_session, make_entry, deferral_count=24)

        await dispatch_queue.claim_batch(db_session, "w-1", 10, visibility_timeout=60, now=NOW)

        await db_session.refresh(entry)
        assert entry.status == "dead"
        assert entry.failure_reason == "rate_limit_exhausted"

    @pytest.mark.asyncio
    async def test_retry_inside_quiet_hours_is_deferred(
        self, db_session, dispatch_queue, make_entry, tenant_config
    ):
        await tenant_config(quiet_hours={"start": "10:00", "end": "11:00", "timezone": "UTC"})
        entry = await _stored(
            db_session,
            make_entry,
            status="in_flight",
            claimed_by="w-1",
            claimed_until=NOW,
            attempt_count=1,
            next_eligible_at=NOW - timedelta(minutes=30),
        )
        await dispatch_queue.schedule_retry(
            db_session, entry, NOW, error="HTTP 503", worker_id="w-1", now=NOW - timedelta(minutes=20)
        )

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert claimed == []
        await db_session.refresh(entry)
        assert entry.status == "pending"
        assert entry.next_eligible_at == datetime(2026, 3, 10, 11, tzinfo=UTC)
        assert entry.attempt_count == 1
        assert entry.deferral_count == 0
        assert await _event_types(db_session, entry.id) == Counter(
            {"retry_scheduled": 1, "deferred": 1}
        )

    @pytest.mark.asyncio
    async def test_recipient_quiet_hours_checked_at_claim(
        self, db_session, dispatch_queue, make_entry
    ):
        db_session.add(
            RecipientPreference(
                tenant_id="acme",
                recipient_type="user",
                recipient_id="u-1",
                quiet_hours_start=time(9),
                quiet_hours_end=time(12),
                timezone="UTC",
            )
        )
        quiet = await _stored(db_session, make_entry)
        other = await _stored(db_session, make_entry, recipient_id="u-2")

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert [e.id for e in claimed] == [other.id]
        await db_session.refresh(quiet)
        assert quiet.next_eligible_at == datetime(2026, 3, 10, 12, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_mandatory_category_ignores_quiet_hours(
        self, db_session, dispatch_queue, make_entry, tenant_config
    ):
        await tenant_config(quiet_hours={"start": "10:00", "end": "11:00", "timezone": "UTC"})
        entry = await _stored(db_session, make_entry, category="security")

        claimed = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )

        assert [e.id for e in claimed] == [entry.id]

    def test_claim_batch_is_the_only_claim_entry_point(self, dispatch_queue):
        assert hasattr(dispatch_queue, "claim_batch")
        assert not hasattr(dispatch_queue, "dequeue_batch")


@pytest.mark.unit
class TestReleaseExpired:
    """Test suite for visibility timeout handling."""

    @pytest.mark.asyncio
    async def test_lapsed_claim_returns_to_pending(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session,
            make_entry,
            status="in_flight",
            claimed_by="w-1",
            claimed_until=NOW - timedelta(seconds=1),
            attempt_count=1,
        )

        assert await dispatch_queue.release_expired(db_session, now=NOW) == 1

        await db_session.refresh(entry)
        assert entry.status == "pending"
        assert entry.claimed_by is None
        assert entry.next_eligible_at == NOW

    @pytest.mark.asyncio
    async def test_live_claim_is_kept(self, db_session, dispatch_queue, make_entry):
        await _stored(
            db_session,
            make_entry,
            status="in_flight",
            claimed_by="w-1",
            claimed_until=NOW + timedelta(seconds=30),
            attempt_count=1,
        )
        assert await dispatch_queue.release_expired(db_session, now=NOW) == 0

    @pytest.mark.asyncio
    async def test_lapsed_final_attempt_goes_dead(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session,
            make_entry,
            status="in_flight",
            claimed_by="w-1",
            claimed_until=NOW - timedelta(seconds=1),
            attempt_count=3,
        )

        await dispatch_queue.release_expired(db_session, now=NOW)

        await db_session.refresh(entry)
        assert entry.status == "dead"
        assert entry.failure_reason == "retries_exhausted"

    @pytest.mark.asyncio
    async def test_renewed_claim_is_kept(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session,
            make_entry,
            status="in_flight",
            claimed_by="w-1",
            claimed_until=NOW - timedelta(seconds=1),
            attempt_count=3,
        )

        renewed = await dispatch_queue.renew_claim(
            db_session, entry, worker_id="w-1", visibility_timeout=60, now=NOW
        )

        assert renewed is True
        assert entry.claimed_until == NOW + timedelta(seconds=60)
        assert await dispatch_queue.release_expired(db_session, now=NOW) == 0
        assert not await dispatch_queue.renew_claim(
            db_session, entry, worker_id="w-2", visibility_timeout=60, now=NOW
        )


# ============================================================================
# Outcome guards
# ============================================================================


@pytest.mark.unit
class TestMarkDelivered:
    """Test suite for recording a successful send."""

    @pytest.mark.asyncio
    async def test_owner_marks_delivered(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session, make_entry, status="in_flight", claimed_by="w-1", attempt_count=1
        )

        assert await dispatch_queue.mark_delivered(db_session, entry, worker_id="w-1", now=NOW)
        assert entry.status == "delivered"
        assert entry.delivered_at == NOW

    @pytest.mark.asyncio
    async def test_other_owner_is_rejected(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session, make_entry, status="in_flight", claimed_by="w-2", attempt_count=2
        )

        moved = await dispatch_queue.mark_delivered(db_session, entry, worker_id="w-1", now=NOW)

        assert moved is False
        await db_session.refresh(entry)
        assert entry.status == "in_flight"
        assert entry.claimed_by == "w-2"
        assert await _event_types(db_session, entry.id) == Counter()

    @pytest.mark.asyncio
    async def test_released_entry_is_accepted(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(db_session, make_entry, status="pending", attempt_count=1)

        moved = await dispatch_queue.mark_delivered(db_session, entry, worker_id="w-1", now=NOW)

        assert moved is True
        assert entry.status == "delivered"


# ============================================================================
# Caller operations
# ============================================================================


@pytest.mark.unit
class TestCancelAndRequeue:
    """Test suite for cancel, requeue and dead-letter listing."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(db_session, make_entry)

        cancelled = await dispatch_queue.cancel(db_session, "acme", entry.id, now=NOW)

        assert cancelled.status == "failed"
        assert cancelled.failure_reason == "cancelled"
        assert await _event_types(db_session, entry.id) == Counter({"cancelled": 1})

    @pytest.mark.asyncio
    async def test_cancel_in_flight_is_best_effort(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session, make_entry, status="in_flight", claimed_by="w-1", attempt_count=1
        )

        result = await dispatch_queue.cancel(db_session, "acme", entry.id)

        assert result.status == "in_flight"
        assert result.cancel_requested is True

    @pytest.mark.asyncio
    async def test_cancel_terminal_raises(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(db_session, make_entry, status="delivered")

        with pytest.raises(InvalidTransition) as exc_info:
            await dispatch_queue.cancel(db_session, "acme", entry.id)

        assert exc_info.value.status == "delivered"

    @pytest.mark.asyncio
    async def test_cancel_other_tenant_entry_is_not_found(
        self, db_session, dispatch_queue, make_entry
    ):
        entry = await _stored(db_session, make_entry, tenant_id="globex")
        assert await dispatch_queue.cancel(db_session, "acme", entry.id) is None

    @pytest.mark.asyncio
    async def test_requeue_dead_entry(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(
            db_session,
            make_entry,
            status="dead",
            failure_reason="retries_exhausted",
            attempt_count=3,
            deferral_count=4,
        )
        later = NOW + timedelta(hours=1)

        requeued = await dispatch_queue.requeue(db_session, "acme", entry.id, now=later)

        assert requeued.status == "pending"
        assert requeued.attempt_count == 0
        assert requeued.deferral_count == 0
        assert requeued.failure_reason is None
        assert requeued.next_eligible_at == later

    @pytest.mark.asyncio
    async def test_requeue_requires_dead(self, db_session, dispatch_queue, make_entry):
        entry = await _stored(db_session, make_entry)

        with pytest.raises(InvalidTransition):
            await dispatch_queue.requeue(db_session, "acme", entry.id)

    @pytest.mark.asyncio
    async def test_list_dead_and_counts(self, db_session, dispatch_queue, make_entry):
        await _stored(db_session, make_entry, status="dead", failure_reason="permanent_failure")
        await _stored(
            db_session, make_entry, status="dead", channel="email", failure_reason="permanent_failure"
        )
        await _stored(db_session, make_entry)

        dead = await dispatch_queue.list_dead(db_session, "acme", channel="sms")
        counts = await dispatch_queue.counts(db_session, "acme")

        assert dead.total == 1
        assert counts == {"pending": 1, "in_flight": 0, "delivered": 0, "failed": 0, "dead": 2}
