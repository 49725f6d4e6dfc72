"""Durable priority dispatch queue on the ``queue_entries`` table.

Ordering is (priority desc, next_eligible_at asc); the claim index covers
(status, next_eligible_at, priority) so a claim is an index range scan over
due rows, not a table scan. Scheduled sends, retries and deferrals are all
expressed through ``next_eligible_at``.

Every status change is a compare-and-set UPDATE guarded by the expected
current status, followed by one DeliveryEvent in the same transaction.
Callers own the transaction and commit.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select, update

from notify_service.core.database import dialect_insert, generate_uuid7
from notify_service.features.notifications.enums import (
    EntryStatus,
    EventType,
    FailureReason,
)
from notify_service.features.notifications.exceptions import InvalidTransition
from notify_service.features.notifications.metrics import (
    notification_claims_total,
    notification_dead_total,
    notification_deferred_total,
    notification_released_total,
)
from notify_service.features.notifications.models import QueueEntry
from notify_service.features.notifications.policy import load_policy
from notify_service.features.notifications.preferences import (
    PreferenceFilter,
    get_preference_filter,
)
from notify_service.features.notifications.repository import (
    QueueEntryRepository,
    get_queue_entry_repository,
)
from notify_service.features.notifications.tracker import DeliveryTracker, get_delivery_tracker
from notify_service.infra.logging import get_lazy_logger
from notify_service.infra.ratelimit import (
    RateLimited,
    WindowedRateLimiter,
    get_rate_limiter,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.database import SearchResult
    from notify_service.features.notifications.models import RecipientPreference
    from notify_service.features.notifications.policy import TenantPolicy

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

_SCHEDULING_FIELDS = ("next_eligible_at", "scheduled_for", "expires_at", "priority")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DispatchQueue:
    """Enqueue, claim and transition notification queue entries."""

    def __init__(
        self,
        repository: QueueEntryRepository | None = None,
        tracker: DeliveryTracker | None = None,
        limiter: WindowedRateLimiter | None = None,
        preferences: PreferenceFilter | None = None,
    ) -> None:
        self._repository = repository or get_queue_entry_repository()
        self._tracker = tracker or get_delivery_tracker()
        self._limiter = limiter
        self._preferences = preferences or get_preference_filter()

    @property
    def limiter(self) -> WindowedRateLimiter:
        if self._limiter is None:
            self._limiter = get_rate_limiter()
        return self._limiter

    @property
    def tracker(self) -> DeliveryTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        *,
        event_type: EventType = EventType.QUEUED,
        reason: str | None = None,
        detail: str | None = None,
    ) -> tuple[QueueEntry, bool]:
        """Insert ``entry`` unless its (tenant, idempotency key) already exists.

        A duplicate key never creates a second entry. If the existing entry is
        still pending and the new one is pending too, its scheduling fields
        are updated in place.

        Returns:
            (entry, created): the stored entry and whether it was inserted.
        """
        requested_status = entry.status or EntryStatus.PENDING.value
        values = {
            column.key: getattr(entry, column.key)
            for column in QueueEntry.__table__.columns
            if getattr(entry, column.key, None) is not None
        }
        values.setdefault("id", generate_uuid7())
        insert_stmt = (
            dialect_insert(session, QueueEntry)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["tenant_id", "idempotency_key"])
        )
        inserted = (await session.execute(insert_stmt)).rowcount == 1
        existing = await self._repository.get_by_idempotency_key(
            session, entry.tenant_id, entry.idempotency_key
        )
        if existing is None:
            msg = f"Queue entry for key {entry.idempotency_key!r} vanished after insert"
            raise RuntimeError(msg)

        if inserted:
            await self._tracker.record_entry(
                session,
                existing,
                event_type,
                from_status=None,
                to_status=existing.status,
                reason=reason,
                detail=detail,
                attempt=0,
            )
            logger.info(
                "Notification enqueued",
                extra={
                    "tenant_id": existing.tenant_id,
                    "entry_id": str(existing.id),
                    "channel": existing.channel,
                    "type_code": existing.type_code,
                    "status": existing.status,
                    "priority": existing.priority,
                    "operation": "queue.enqueue",
                },
            )
            return existing, True

        if (
            existing.status == EntryStatus.PENDING.value
            and requested_status == EntryStatus.PENDING.value
        ):
            changed = {
                name: getattr(entry, name)
                for name in _SCHEDULING_FIELDS
                if getattr(entry, name) is not None and getattr(entry, name) != getattr(existing, name)
            }
            if changed:
                result = await session.execute(
                    update(QueueEntry)
                    .where(
                        QueueEntry.id == existing.id,
                        QueueEntry.status == EntryStatus.PENDING.value,
                    )
                    .values(**changed)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await session.refresh(existing)
                    lazy_logger.debug(
                        lambda: f"queue.enqueue: rescheduled {existing.id} ({sorted(changed)})"
                    )

        logger.info(
            "Duplicate idempotency key; existing entry kept",
            extra={
                "tenant_id": existing.tenant_id,
                "entry_id": str(existing.id),
                "idempotency_key": existing.idempotency_key,
                "status": existing.status,
                "operation": "queue.enqueue",
            },
        )
        return existing, False

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def release_expired(self, session: AsyncSession, *, now: datetime | None = None) -> int:
        """Return in-flight entries whose visibility timeout passed to ``pending``.

        An entry whose lapsed claim was its last allowed attempt goes to
        ``dead`` instead, so a message that keeps killing workers stops.
        """
        now = now or _utcnow()
        stmt = select(QueueEntry).where(
            QueueEntry.status == EntryStatus.IN_FLIGHT.value,
            QueueEntry.claimed_until < now,
        ).execution_options(populate_existing=True)
        stale = (await session.execute(stmt)).scalars().all()

        released = 0
        for entry in stale:
            if entry.attempt_count >= entry.max_attempts:
                moved = await self.mark_dead(
                    session,
                    entry,
                    FailureReason.RETRIES_EXHAUSTED,
                    detail="visibility timeout on final attempt",
                    worker_id=entry.claimed_by,
                    lapsed_before=now,
                    now=now,
                )
            else:
                moved = await self._transition(
                    session,
                    entry,
                    expected=(EntryStatus.IN_FLIGHT,),
                    to_status=EntryStatus.PENDING,
                    event_type=EventType.RELEASED,
                    values={
                        "claimed_by": None,
                        "claimed_until": None,
                        "next_eligible_at": now,
                    },
                    where=(QueueEntry.claimed_until < now,),
                    reason="visibility_timeout",
                    detail=f"claim by {entry.claimed_by} expired",
                    now=now,
                )
            if moved:
                released += 1

        if released:
            notification_released_total.inc(released)
            logger.warning(
                "Released entries after visibility timeout",
                extra={"count": released, "operation": "queue.release_expired"},
            )
        return released

    async def claim_batch(
        self,
        session: AsyncSession,
        worker_id: str,
        limit: int,
        *,
        visibility_timeout: float,
        now: datetime | None = None,
        policies: dict[str, TenantPolicy] | None = None,
    ) -> list[QueueEntry]:
        """Atomically claim up to ``limit`` due entries for ``worker_id``.

        For each candidate, in priority order:

        1. expired entries become ``failed/expired``;
        2. entries that would go out inside the recipient's quiet hours are
           moved to the window's end (retries and deferrals can land there);
        3. the tenant's channel quota is reserved; a rejection defers the
           entry to the next window start (or parks it ``dead`` once the
           deferral budget is spent);
        4. ``pending -> in_flight`` compare-and-set; losing the race gives
           the quota back.

        The caller must commit before dispatching the returned entries.
        """
        now = now or _utcnow()
        await self.release_expired(session, now=now)

        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.status == EntryStatus.PENDING.value,
                QueueEntry.next_eligible_at <= now,
            )
            .order_by(QueueEntry.priority.desc(), QueueEntry.next_eligible_at, QueueEntry.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        if session.get_bind().dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        candidates = (await session.execute(stmt)).scalars().all()

        policies = policies if policies is not None else {}
        prefs: dict[tuple[str, str, str], Sequence[RecipientPreference]] = {}
        claimed: list[QueueEntry] = []
        claimed_until = now + timedelta(seconds=visibility_timeout)

        for entry in candidates:
            if entry.expires_at is not None and entry.expires_at <= now:
                await self.mark_failed(
                    session,
                    entry,
                    FailureReason.EXPIRED,
                    detail=f"expired at {entry.expires_at.isoformat()}",
                    expected=(EntryStatus.PENDING,),
                    event_type=EventType.EXPIRED,
                    now=now,
                )
                continue

            policy = policies.get(entry.tenant_id)
            if policy is None:
                policy = await load_policy(session, entry.tenant_id)
                policies[entry.tenant_id] = policy

            if policy.respects_quiet_hours(entry.channel):
                key = (entry.tenant_id, entry.recipient_type, entry.recipient_id)
                if key not in prefs:
                    prefs[key] = await self._preferences.load(session, *key)
                quiet_until = await self._preferences.quiet_until(
                    session, policy, entry, now, prefs=prefs[key]
                )
                if quiet_until is not None:
                    await self._defer_quiet_hours(session, entry, quiet_until, now=now)
                    continue

            admission = await self.limiter.acquire(
                entry.tenant_id,
                entry.channel,
                policy.quotas_for(entry.channel),
                now,
                session=session,
            )
            if isinstance(admission, RateLimited):
                await self._defer_rate_limited(session, entry, admission, policy, now=now)
                continue

            result = await session.execute(
                update(QueueEntry)
                .where(
                    QueueEntry.id == entry.id,
                    QueueEntry.status == EntryStatus.PENDING.value,
                    QueueEntry.next_eligible_at <= now,
                )
                .values(
                    status=EntryStatus.IN_FLIGHT.value,
                    claimed_by=worker_id,
                    claimed_until=claimed_until,
                    attempt_count=QueueEntry.attempt_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.limiter.release(
                    entry.tenant_id, entry.channel, admission, session=session
                )
                lazy_logger.debug(lambda: f"queue.claim: lost race for {entry.id}")
                continue

            await session.refresh(entry)
            claimed.append(entry)
            notification_claims_total.labels(channel=entry.channel).inc()

        if claimed:
            lazy_logger.debug(
                lambda: f"queue.claim_batch({worker_id}) -> {len(claimed)}/{len(candidates)} claimed"
            )
        return claimed

    async def _defer_quiet_hours(
        self, session: AsyncSession, entry: QueueEntry, until: datetime, *, now: datetime
    ) -> None:
        moved = await self._transition(
            session,
            entry,
            expected=(EntryStatus.PENDING,),
            to_status=EntryStatus.PENDING,
            event_type=EventType.DEFERRED,
            values={"next_eligible_at": until},
            reason="quiet_hours",
            detail=f"deferred until {until.isoformat()}",
            now=now,
        )
        if moved:
            notification_deferred_total.labels(channel=entry.channel, reason="quiet_hours").inc()

    async def _defer_rate_limited(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        admission: RateLimited,
        policy: TenantPolicy,
        *,
        now: datetime,
    ) -> None:
        if entry.deferral_count + 1 > policy.max_rate_limit_deferrals:
            await self.mark_dead(
                session,
                entry,
                FailureReason.RATE_LIMIT_EXHAUSTED,
                detail=(
                    f"{entry.deferral_count} rate-limit deferrals; "
                    f"{admission.window.value} quota {admission.limit}"
                ),
                expected=(EntryStatus.PENDING,),
                now=now,
            )
            return

        await self._transition(
            session,
            entry,
            expected=(EntryStatus.PENDING,),
            to_status=EntryStatus.PENDING,
            event_type=EventType.RATE_LIMITED,
            values={
                "next_eligible_at": admission.until,
                "deferral_count": QueueEntry.deferral_count + 1,
            },
            reason="rate_limited",
            detail=f"{admission.window.value} quota {admission.limit}; retry at {admission.until.isoformat()}",
            now=now,
        )
        notification_deferred_total.labels(channel=entry.channel, reason="rate_limited").inc()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        *,
        expected: Iterable[EntryStatus],
        to_status: EntryStatus,
        event_type: EventType,
        values: dict[str, Any] | None = None,
        where: Sequence[Any] = (),
        now: datetime | None = None,
        **event_fields: Any,
    ) -> bool:
        """Compare-and-set the status, then record the event. False if the guard failed."""
        expected = tuple(expected)
        stmt = (
            update(QueueEntry)
            .where(
                QueueEntry.id == entry.id,
                QueueEntry.status.in_([s.value for s in expected]),
                *where,
            )
            .values(status=to_status.value, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            lazy_logger.debug(
                lambda: f"queue.transition({entry.id}) {[s.value for s in expected]} -> "
                f"{to_status.value} rejected (status changed)"
            )
            return False

        from_status = expected[0].value if len(expected) == 1 else entry.status
        await session.refresh(entry)
        await self._tracker.record_entry(
            session,
            entry,
            event_type,
            from_status=from_status,
            to_status=to_status,
            occurred_at=now,
            **event_fields,
        )
        return True

    async def renew_claim(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        *,
        worker_id: str,
        visibility_timeout: float,
        now: datetime | None = None,
    ) -> bool:
        """Restart the visibility timeout of a claim ``worker_id`` still holds.

        Commits, so release passes in other workers see the new deadline
        before the send starts. False when the claim is gone.
        """
        now = now or _utcnow()
        result = await session.execute(
            update(QueueEntry)
            .where(
                QueueEntry.id == entry.id,
                QueueEntry.status == EntryStatus.IN_FLIGHT.value,
                QueueEntry.claimed_by == worker_id,
            )
            .values(claimed_until=now + timedelta(seconds=visibility_timeout))
            .execution_options(synchronize_session=False)
        )
        renewed = result.rowcount == 1
        await session.commit()
        await session.refresh(entry)
        return renewed

    async def mark_delivered(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        *,
        worker_id: str | None,
        provider: str | None = None,
        provider_message_id: str | None = None,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> bool:
        """``in_flight -> delivered``.

        With a ``worker_id`` the row must still be claimed by that worker,
        or released back to ``pending`` and not yet claimed again: the
        provider already has the message.
        """
        now = now or _utcnow()
        where: tuple[Any, ...] = ()
        if worker_id:
            where = (
                or_(
                    and_(
                        QueueEntry.status == EntryStatus.IN_FLIGHT.value,
                        QueueEntry.claimed_by == worker_id,
                    ),
                    and_(
                        QueueEntry.status == EntryStatus.PENDING.value,
                        QueueEntry.claimed_by.is_(None),
                    ),
                ),
            )
        return await self._transition(
            session,
            entry,
            expected=(EntryStatus.IN_FLIGHT, EntryStatus.PENDING),
            to_status=EntryStatus.DELIVERED,
            event_type=EventType.DELIVERED,
            values={
                "claimed_by": None,
                "claimed_until": None,
                "delivered_at": now,
                "provider_message_id": provider_message_id,
                "last_error": None,
            },
            where=where,
            provider=provider,
            provider_message_id=provider_message_id,
            details=details,
            detail=f"delivered by {worker_id}" if worker_id else None,
            now=now,
        )

    async def schedule_retry(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        next_eligible_at: datetime,
        *,
        error: str,
        worker_id: str | None,
        provider: str | None = None,
        http_status: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """``in_flight -> pending`` at ``next_eligible_at``; priority is unchanged."""
        return await self._transition(
            session,
            entry,
            expected=(EntryStatus.IN_FLIGHT,),
            to_status=EntryStatus.PENDING,
            event_type=EventType.RETRY_SCHEDULED,
            values={
                "claimed_by": None,
                "claimed_until": None,
                "next_eligible_at": next_eligible_at,
                "last_error": error[:2000],
            },
            where=(QueueEntry.claimed_by == worker_id,) if worker_id else (),
            reason="transient_failure",
            detail=error,
            provider=provider,
            http_status=http_status,
            details={"next_eligible_at": next_eligible_at.isoformat()},
            now=now,
        )

    async def mark_failed(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        reason: FailureReason,
        *,
        detail: str | None = None,
        expected: Iterable[EntryStatus] = (EntryStatus.IN_FLIGHT,),
        event_type: EventType = EventType.FAILED,
        worker_id: str | None = None,
        provider: str | None = None,
        http_status: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Terminal ``failed`` with a closed-set reason."""
        expected = tuple(expected)
        where: tuple[Any, ...] = ()
        if worker_id and expected == (EntryStatus.IN_FLIGHT,):
            where = (QueueEntry.claimed_by == worker_id,)
        moved = await self._transition(
            session,
            entry,
            expected=expected,
            to_status=EntryStatus.FAILED,
            event_type=event_type,
            values={
                "claimed_by": None,
                "claimed_until": None,
                "failure_reason": reason.value,
                "last_error": detail[:2000] if detail else None,
            },
            where=where,
            reason=reason.value,
            detail=detail,
            provider=provider,
            http_status=http_status,
            now=now,
        )
        if moved:
            logger.info(
                "Notification failed",
                extra={
                    "tenant_id": entry.tenant_id,
                    "entry_id": str(entry.id),
                    "channel": entry.channel,
                    "reason": reason.value,
                    "operation": "queue.mark_failed",
                },
            )
        return moved

    async def mark_dead(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        reason: FailureReason,
        *,
        detail: str | None = None,
        expected: Iterable[EntryStatus] = (EntryStatus.IN_FLIGHT,),
        worker_id: str | None = None,
        provider: str | None = None,
        http_status: int | None = None,
        lapsed_before: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Terminal ``dead``; surfaced by :meth:`list_dead` for manual handling."""
        expected = tuple(expected)
        where: tuple[Any, ...] = ()
        if worker_id and expected == (EntryStatus.IN_FLIGHT,):
            where = (QueueEntry.claimed_by == worker_id,)
        if lapsed_before is not None:
            where = (*where, QueueEntry.claimed_until < lapsed_before)
        moved = await self._transition(
            session,
            entry,
            expected=expected,
            to_status=EntryStatus.DEAD,
            event_type=EventType.DEAD,
            values={
                "claimed_by": None,
                "claimed_until": None,
                "failure_reason": reason.value,
                "last_error": detail[:2000] if detail else None,
            },
            where=where,
            reason=reason.value,
            detail=detail,
            provider=provider,
            http_status=http_status,
            now=now,
        )
        if moved:
            notification_dead_total.labels(channel=entry.channel, reason=reason.value).inc()
            logger.error(
                "Notification parked as dead",
                extra={
                    "tenant_id": entry.tenant_id,
                    "entry_id": str(entry.id),
                    "channel": entry.channel,
                    "type_code": entry.type_code,
                    "reason": reason.value,
                    "attempts": entry.attempt_count,
                    "operation": "queue.mark_dead",
                },
            )
        return moved

    # ------------------------------------------------------------------
    # Caller operations
    # ------------------------------------------------------------------

    async def cancel(
        self,
        session: AsyncSession,
        tenant_id: str,
        entry_id: UUID,
        *,
        now: datetime | None = None,
    ) -> QueueEntry | None:
        """Cancel an entry.

        ``pending`` becomes ``failed/cancelled`` at once. ``in_flight`` is
        best effort: ``cancel_requested`` is set and the running attempt may
        still deliver; if it fails transiently it is not retried.

        Raises:
            InvalidTransition: If the entry is already terminal.
        """
        entry = await self._repository.get_for_tenant(session, tenant_id, entry_id)
        if entry is None:
            return None

        if entry.status == EntryStatus.PENDING.value:
            moved = await self.mark_failed(
                session,
                entry,
                FailureReason.CANCELLED,
                detail="cancelled by caller",
                expected=(EntryStatus.PENDING,),
                event_type=EventType.CANCELLED,
                now=now,
            )
            if moved:
                return entry
            # Claimed between read and update
            await session.refresh(entry)

        if entry.status == EntryStatus.IN_FLIGHT.value:
            await session.execute(
                update(QueueEntry)
                .where(QueueEntry.id == entry.id)
                .values(cancel_requested=True)
                .execution_options(synchronize_session=False)
            )
            await session.refresh(entry)
            logger.info(
                "Cancellation requested for in-flight entry",
                extra={
                    "tenant_id": tenant_id,
                    "entry_id": str(entry.id),
                    "operation": "queue.cancel",
                },
            )
            return entry

        raise InvalidTransition(str(entry.id), entry.status, "cancel")

    async def requeue(
        self,
        session: AsyncSession,
        tenant_id: str,
        entry_id: UUID,
        *,
        now: datetime | None = None,
    ) -> QueueEntry | None:
        """Send a dead entry back to ``pending`` with fresh attempt and deferral budgets.

        Raises:
            InvalidTransition: If the entry is not dead.
        """
        now = now or _utcnow()
        entry = await self._repository.get_for_tenant(session, tenant_id, entry_id)
        if entry is None:
            return None

        moved = await self._transition(
            session,
            entry,
            expected=(EntryStatus.DEAD,),
            to_status=EntryStatus.PENDING,
            event_type=EventType.REQUEUED,
            values={
                "attempt_count": 0,
                "deferral_count": 0,
                "next_eligible_at": now,
                "failure_reason": None,
                "cancel_requested": False,
            },
            reason="manual_requeue",
            detail=entry.failure_reason,
            attempt=0,
            now=now,
        )
        if not moved:
            raise InvalidTransition(str(entry.id), entry.status, "requeue")

        logger.info(
            "Dead entry requeued",
            extra={"tenant_id": tenant_id, "entry_id": str(entry.id), "operation": "queue.requeue"},
        )
        return entry

    async def list_dead(
        self,
        session: AsyncSession,
        tenant_id: str,
        *,
        channel: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[QueueEntry]:
        stmt = self._repository.list_statement(
            tenant_id, status=EntryStatus.DEAD.value, channel=channel
        )
        return await self._repository.search(session, stmt, limit=limit, offset=offset)

    async def counts(self, session: AsyncSession, tenant_id: str | None = None) -> dict[str, int]:
        """Entry count per status, optionally for one tenant."""
        stmt = select(QueueEntry.status, func.count()).group_by(QueueEntry.status)
        if tenant_id:
            stmt = stmt.where(QueueEntry.tenant_id == tenant_id)
        rows = (await session.execute(stmt)).all()
        counts = {status.value: 0 for status in EntryStatus}
        counts.update({status: int(count) for status, count in rows})
        return counts


_queue: DispatchQueue | None = None


def get_dispatch_queue() -> DispatchQueue:
    """Get or create the singleton DispatchQueue instance."""
    global _queue
    if _queue is None:
        _queue = DispatchQueue()
    return _queue


def set_dispatch_queue(queue: DispatchQueue | None) -> None:
    global _queue
    _queue = queue


__all__ = ["DispatchQueue", "get_dispatch_queue", "set_dispatch_queue"]
