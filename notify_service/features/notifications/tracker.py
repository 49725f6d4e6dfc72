"""Delivery tracker: the append-only DeliveryEvent log.

Every state change of a queue entry or webhook delivery appends exactly one
row here. Rows are never updated; analytics folds them later.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from notify_service.features.notifications.enums import EntryKind, EntryStatus, EventType
from notify_service.features.notifications.models import DeliveryEvent
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.features.notifications.models import QueueEntry

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


def _value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


class DeliveryTracker:
    """Appends DeliveryEvent rows inside the caller's transaction."""

    async def record(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        entry_id: UUID,
        channel: str,
        type_code: str,
        event_type: EventType | str,
        to_status: EntryStatus | str,
        from_status: EntryStatus | str | None = None,
        entry_kind: EntryKind | str = EntryKind.NOTIFICATION,
        attempt: int = 0,
        reason: str | None = None,
        detail: str | None = None,
        provider: str | None = None,
        provider_message_id: str | None = None,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> DeliveryEvent:
        event = DeliveryEvent(
            tenant_id=tenant_id,
            entry_kind=_value(entry_kind),
            entry_id=entry_id,
            channel=channel,
            type_code=type_code,
            event_type=_value(event_type),
            from_status=_value(from_status),
            to_status=_value(to_status),
            attempt=attempt,
            reason=_value(reason),
            detail=detail[:2000] if detail else detail,
            provider=provider,
            provider_message_id=provider_message_id,
            http_status=http_status,
            details=details,
            occurred_at=occurred_at or datetime.now(UTC),
        )
        session.add(event)
        await session.flush()

        lazy_logger.debug(
            lambda: f"tracker.record({event.entry_kind}:{entry_id}) {event.from_status} -> "
            f"{event.to_status} [{event.event_type}] attempt={attempt}"
        )
        return event

    async def record_entry(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        event_type: EventType,
        *,
        to_status: EntryStatus | str,
        from_status: EntryStatus | str | None = None,
        **fields: Any,
    ) -> DeliveryEvent:
        """Record a transition of a notification queue entry."""
        return await self.record(
            session,
            tenant_id=entry.tenant_id,
            entry_id=entry.id,
            channel=entry.channel,
            type_code=entry.type_code,
            event_type=event_type,
            to_status=to_status,
            from_status=from_status,
            entry_kind=EntryKind.NOTIFICATION,
            attempt=fields.pop("attempt", entry.attempt_count),
            **fields,
        )

    async def record_engagement(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        kind: str,
        *,
        url: str | None = None,
        occurred_at: datetime | None = None,
    ) -> DeliveryEvent:
        """Append an ``opened``/``clicked`` event. Status is unchanged."""
        event_type = EventType(kind)
        event = await self.record_entry(
            session,
            entry,
            event_type,
            from_status=entry.status,
            to_status=entry.status,
            details={"url": url} if url else None,
            occurred_at=occurred_at,
        )
        logger.info(
            f"Engagement recorded: {event_type.value}",
            extra={
                "tenant_id": entry.tenant_id,
                "entry_id": str(entry.id),
                "channel": entry.channel,
                "operation": "tracker.engagement",
            },
        )
        return event


_tracker: DeliveryTracker | None = None


def get_delivery_tracker() -> DeliveryTracker:
    """Get or create the singleton DeliveryTracker instance."""
    global _tracker
    if _tracker is None:
        _tracker = DeliveryTracker()
    return _tracker


__all__ = ["DeliveryTracker", "get_delivery_tracker"]
