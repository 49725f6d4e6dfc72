"""Retry manager: backoff schedule and exhaustion handling for transient failures."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from notify_service.features.notifications.enums import EventType, FailureReason
from notify_service.features.notifications.metrics import notification_retries_scheduled_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.features.notifications.channels.base import TransientFailure
    from notify_service.features.notifications.models import QueueEntry
    from notify_service.features.notifications.policy import TenantPolicy
    from notify_service.features.notifications.queue import DispatchQueue

logger = logging.getLogger(__name__)


class RetryManager:
    """Decides what happens to an entry after a transient failure.

    Delay for attempt ``n`` (1-based) is ``base * 2^(n-1)`` capped at the
    tenant's ``max_delay``. Once ``attempt_count`` reaches the entry's
    ``max_attempts`` it goes to ``dead`` and is never retried again. A
    cancellation requested while in flight turns the retry into
    ``failed/cancelled``.
    """

    def __init__(self, queue: DispatchQueue) -> None:
        self._queue = queue

    @staticmethod
    def delay_for(policy: TenantPolicy, channel: str, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt``."""
        return policy.retry_strategy(channel).delay_for(attempt)

    @staticmethod
    def schedule(policy: TenantPolicy, channel: str, attempts: int | None = None) -> list[float]:
        """Full delay schedule for a channel (one delay per retry)."""
        strategy = policy.retry_strategy(channel)
        total = attempts if attempts is not None else strategy.max_attempts
        return [strategy.delay_for(n) for n in range(1, total)]

    async def handle_transient(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        failure: TransientFailure,
        policy: TenantPolicy,
        *,
        worker_id: str | None,
        now: datetime | None = None,
    ) -> str:
        """Re-queue, kill or cancel ``entry``. Returns the resulting status."""
        now = now or datetime.now(UTC)

        if entry.cancel_requested:
            await self._queue.mark_failed(
                session,
                entry,
                FailureReason.CANCELLED,
                detail=f"cancelled while in flight; last error: {failure.reason}",
                event_type=EventType.CANCELLED,
                worker_id=worker_id,
                provider=failure.provider,
                http_status=failure.status_code,
                now=now,
            )
            return entry.status

        if entry.attempt_count >= entry.max_attempts:
            await self._queue.mark_dead(
                session,
                entry,
                FailureReason.RETRIES_EXHAUSTED,
                detail=f"{entry.attempt_count} attempts; last error: {failure.reason}",
                worker_id=worker_id,
                provider=failure.provider,
                http_status=failure.status_code,
                now=now,
            )
            return entry.status

        delay = self.delay_for(policy, entry.channel, entry.attempt_count)
        next_eligible_at = now + timedelta(seconds=delay)
        moved = await self._queue.schedule_retry(
            session,
            entry,
            next_eligible_at,
            error=failure.reason,
            worker_id=worker_id,
            provider=failure.provider,
            http_status=failure.status_code,
            now=now,
        )
        if moved:
            notification_retries_scheduled_total.labels(channel=entry.channel).inc()
            logger.info(
                "Retry scheduled",
                extra={
                    "tenant_id": entry.tenant_id,
                    "entry_id": str(entry.id),
                    "channel": entry.channel,
                    "attempt": entry.attempt_count,
                    "max_attempts": entry.max_attempts,
                    "delay_seconds": delay,
                    "error": failure.reason,
                    "operation": "retry.schedule",
                },
            )
        return entry.status


__all__ = ["RetryManager"]
