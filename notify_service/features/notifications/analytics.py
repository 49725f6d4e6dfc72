"""Analytics aggregator: folds the DeliveryEvent log into daily buckets.

Buckets are derived data. Each event is folded at most once: a fold marker
keyed by the event id is inserted in the same transaction as the bucket
increment, so replaying a batch (or running two folders) cannot double
count. ``recompute`` clears a day range and folds it again from the log.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select

from notify_service.core.database import dialect_insert, generate_uuid7
from notify_service.core.services import BaseService
from notify_service.core.settings import get_dispatch_settings
from notify_service.features.notifications.enums import EntryStatus, EventType
from notify_service.features.notifications.metrics import analytics_events_folded_total
from notify_service.features.notifications.models import (
    AnalyticsBucket,
    AnalyticsFoldMarker,
    DeliveryEvent,
    rate,
)
from notify_service.features.notifications.repository import (
    AnalyticsBucketRepository,
    get_analytics_bucket_repository,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

COUNTERS = ("sent", "delivered", "failed", "dead", "suppressed", "deferred", "opened", "clicked")

_FAILED_EVENTS = frozenset({EventType.FAILED.value, EventType.EXPIRED.value, EventType.CANCELLED.value})
_DEFERRED_EVENTS = frozenset({EventType.DEFERRED.value, EventType.RATE_LIMITED.value})


def event_counters(event: DeliveryEvent) -> Counter[str]:
    """Bucket counters one event contributes to.

    Every event that leaves ``in_flight`` is one send attempt, except a
    release after a lapsed claim: that attempt never reported back and the
    entry is sent again. The other counters follow the event type.
    """
    counts: Counter[str] = Counter()
    kind = event.event_type
    if event.from_status == EntryStatus.IN_FLIGHT.value and kind != EventType.RELEASED.value:
        counts["sent"] += 1

    if kind == EventType.DELIVERED.value:
        counts["delivered"] += 1
    elif kind in _FAILED_EVENTS:
        counts["failed"] += 1
    elif kind == EventType.DEAD.value:
        counts["dead"] += 1
    elif kind == EventType.SUPPRESSED.value:
        counts["suppressed"] += 1
    elif kind in _DEFERRED_EVENTS:
        counts["deferred"] += 1
    elif kind == EventType.OPENED.value:
        counts["opened"] += 1
    elif kind == EventType.CLICKED.value:
        counts["clicked"] += 1
    return counts


def _day_bounds(day_from: date, day_to: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day_from, time.min, tzinfo=UTC)
    end = datetime.combine(day_to + timedelta(days=1), time.min, tzinfo=UTC)
    return start, end


@dataclass(frozen=True, slots=True)
class FoldResult:
    """``folded`` events were applied; ``skipped`` were already folded elsewhere."""

    folded: int
    skipped: int


class AnalyticsAggregator(BaseService):
    """Folds delivery events into AnalyticsBucket rows and reports on them."""

    def __init__(self, repository: AnalyticsBucketRepository | None = None) -> None:
        super().__init__()
        self._repository = repository or get_analytics_bucket_repository()

    async def fold_pending(
        self, session: AsyncSession, *, batch_size: int | None = None
    ) -> FoldResult:
        """Fold up to ``batch_size`` events that have no fold marker yet."""
        batch_size = batch_size or get_dispatch_settings().analytics_fold_batch_size
        stmt = (
            select(DeliveryEvent)
            .outerjoin(AnalyticsFoldMarker, AnalyticsFoldMarker.event_id == DeliveryEvent.id)
            .where(AnalyticsFoldMarker.event_id.is_(None))
            .order_by(DeliveryEvent.occurred_at, DeliveryEvent.id)
            .limit(batch_size)
        )
        return await self._fold(session, stmt)

    async def recompute(
        self,
        session: AsyncSession,
        tenant_id: str,
        day_from: date,
        day_to: date,
        *,
        batch_size: int | None = None,
    ) -> FoldResult:
        """Drop and rebuild a tenant's buckets for ``day_from..day_to`` inclusive."""
        if day_to < day_from:
            msg = "day_to must not be before day_from"
            raise ValueError(msg)
        batch_size = batch_size or get_dispatch_settings().analytics_fold_batch_size

        await session.execute(
            delete(AnalyticsBucket).where(
                AnalyticsBucket.tenant_id == tenant_id,
                AnalyticsBucket.day >= day_from,
                AnalyticsBucket.day <= day_to,
            )
        )
        await session.execute(
            delete(AnalyticsFoldMarker).where(
                AnalyticsFoldMarker.tenant_id == tenant_id,
                AnalyticsFoldMarker.day >= day_from,
                AnalyticsFoldMarker.day <= day_to,
            )
        )

        start, end = _day_bounds(day_from, day_to)
        base = (
            select(DeliveryEvent)
            .outerjoin(AnalyticsFoldMarker, AnalyticsFoldMarker.event_id == DeliveryEvent.id)
            .where(
                AnalyticsFoldMarker.event_id.is_(None),
                DeliveryEvent.tenant_id == tenant_id,
                DeliveryEvent.occurred_at >= start,
                DeliveryEvent.occurred_at < end,
            )
            .order_by(DeliveryEvent.occurred_at, DeliveryEvent.id)
            .limit(batch_size)
        )

        folded = skipped = 0
        while True:
            result = await self._fold(session, base)
            folded += result.folded
            skipped += result.skipped
            if result.folded + result.skipped < batch_size:
                break

        self.logger.info(
            "Analytics recomputed",
            extra={
                "tenant_id": tenant_id,
                "day_from": day_from.isoformat(),
                "day_to": day_to.isoformat(),
                "folded": folded,
                "operation": "analytics.recompute",
            },
        )
        return FoldResult(folded, skipped)

    async def _fold(self, session: AsyncSession, stmt: Select[tuple[DeliveryEvent]]) -> FoldResult:
        events = (await session.execute(stmt)).scalars().all()
        if not events:
            return FoldResult(0, 0)

        deltas: dict[tuple[str, str, str, date], Counter[str]] = defaultdict(Counter)
        folded = skipped = 0
        now = datetime.now(UTC)

        for event in events:
            day = event.occurred_at.astimezone(UTC).date()
            marker = (
                dialect_insert(session, AnalyticsFoldMarker)
                .values(event_id=event.id, tenant_id=event.tenant_id, day=day, folded_at=now)
                .on_conflict_do_nothing(index_elements=["event_id"])
            )
            if (await session.execute(marker)).rowcount != 1:
                skipped += 1
                continue
            folded += 1
            counts = event_counters(event)
            if counts:
                deltas[(event.tenant_id, event.channel, event.type_code, day)].update(counts)
            analytics_events_folded_total.labels(event_type=event.event_type).inc()

        for (tenant_id, channel, type_code, day), counts in deltas.items():
            await self._apply(session, tenant_id, channel, type_code, day, counts, now)

        self._lazy.debug(
            lambda: f"analytics.fold: {folded} folded, {skipped} skipped, {len(deltas)} buckets touched"
        )
        return FoldResult(folded, skipped)

    async def _apply(
        self,
        session: AsyncSession,
        tenant_id: str,
        channel: str,
        type_code: str,
        day: date,
        counts: Counter[str],
        now: datetime,
    ) -> None:
        """Add ``counts`` to the bucket, creating it if needed."""
        values: dict[str, Any] = {name: counts.get(name, 0) for name in COUNTERS}
        insert_stmt = dialect_insert(session, AnalyticsBucket).values(
            id=generate_uuid7(),
            tenant_id=tenant_id,
            channel=channel,
            type_code=type_code,
            day=day,
            created_at=now,
            updated_at=now,
            **values,
        )
        table = AnalyticsBucket.__table__.c
        upsert = insert_stmt.on_conflict_do_update(
            index_elements=["tenant_id", "channel", "type_code", "day"],
            set_={
                **{name: table[name] + insert_stmt.excluded[name] for name in COUNTERS},
                "updated_at": now,
            },
        )
        await session.execute(upsert)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def buckets(
        self,
        session: AsyncSession,
        tenant_id: str,
        day_from: date,
        day_to: date,
        *,
        channel: str | None = None,
        type_code: str | None = None,
    ) -> Sequence[AnalyticsBucket]:
        return await self._repository.list_range(
            session, tenant_id, day_from, day_to, channel=channel, type_code=type_code
        )

    async def summary(
        self,
        session: AsyncSession,
        tenant_id: str,
        day_from: date,
        day_to: date,
        *,
        channel: str | None = None,
        type_code: str | None = None,
    ) -> dict[str, Any]:
        """Totals, rates and per-channel counts over a day range."""
        rows = await self.buckets(
            session, tenant_id, day_from, day_to, channel=channel, type_code=type_code
        )
        totals = dict.fromkeys(COUNTERS, 0)
        by_channel: dict[str, dict[str, int]] = {}
        for bucket in rows:
            per_channel = by_channel.setdefault(bucket.channel, dict.fromkeys(COUNTERS, 0))
            for name in COUNTERS:
                value = getattr(bucket, name) or 0
                totals[name] += value
                per_channel[name] += value

        return {
            "tenant_id": tenant_id,
            "day_from": day_from,
            "day_to": day_to,
            "totals": totals,
            "delivery_rate": rate(totals["delivered"], totals["sent"]),
            "open_rate": rate(totals["opened"], totals["delivered"]),
            "click_rate": rate(totals["clicked"], totals["delivered"]),
            "failure_rate": rate(totals["failed"] + totals["dead"], totals["sent"]),
            "by_channel": by_channel,
            "buckets": list(rows),
        }


_aggregator: AnalyticsAggregator | None = None


def get_analytics_aggregator() -> AnalyticsAggregator:
    """Get or create the singleton AnalyticsAggregator instance."""
    global _aggregator
    if _aggregator is None:
        _aggregator = AnalyticsAggregator()
    return _aggregator


__all__ = [
    "COUNTERS",
    "AnalyticsAggregator",
    "FoldResult",
    "event_counters",
    "get_analytics_aggregator",
]
