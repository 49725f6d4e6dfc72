"""Channel dispatcher: one delivery attempt for a claimed queue entry.

The dispatcher never raises for delivery problems. Whatever the sender
does (returns, times out, blows up) is mapped onto exactly one queue
transition and one DeliveryEvent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from opentelemetry import trace
from pydantic import ValidationError

from notify_service.core.settings import get_dispatch_settings
from notify_service.features.notifications.channels import (
    Delivered,
    PermanentFailure,
    TransientFailure,
    WebhookChannelSender,
    get_channel_registry,
    resolve_webhook,
)
from notify_service.features.notifications.content import load_content
from notify_service.features.notifications.enums import EntryStatus, FailureReason
from notify_service.features.notifications.metrics import (
    notification_dispatch_duration_seconds,
    notification_dispatch_total,
)
from notify_service.features.notifications.policy import load_policy
from notify_service.features.notifications.queue import DispatchQueue, get_dispatch_queue
from notify_service.features.notifications.retry import RetryManager
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.features.notifications.channels import (
        ChannelRegistry,
        ChannelSender,
        SendResult,
    )
    from notify_service.features.notifications.models import QueueEntry
    from notify_service.features.notifications.policy import TenantPolicy

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)
tracer = trace.get_tracer(__name__)


class ChannelDispatcher:
    """Hands claimed entries to channel senders and records the outcome."""

    def __init__(
        self,
        queue: DispatchQueue | None = None,
        registry: ChannelRegistry | None = None,
        retry_manager: RetryManager | None = None,
        *,
        send_timeout: float | None = None,
    ) -> None:
        self._queue = queue or get_dispatch_queue()
        self._registry = registry
        self._retry = retry_manager or RetryManager(self._queue)
        self._send_timeout = send_timeout

    @property
    def registry(self) -> ChannelRegistry:
        if self._registry is None:
            self._registry = get_channel_registry()
        return self._registry

    @property
    def send_timeout(self) -> float:
        if self._send_timeout is None:
            self._send_timeout = get_dispatch_settings().send_timeout_seconds
        return self._send_timeout

    async def dispatch(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        *,
        worker_id: str,
        policy: TenantPolicy | None = None,
        visibility_timeout: float | None = None,
        now: datetime | None = None,
    ) -> str:
        """Attempt delivery of one in-flight entry.

        Returns the entry status after the attempt. Stale claims (the entry
        was released or finished elsewhere) are skipped without a send.
        Right before the send the claim is renewed for a full visibility
        timeout, so an entry late in a batch cannot be released and sent
        twice.
        """
        await session.refresh(entry)
        if entry.status != EntryStatus.IN_FLIGHT.value or entry.claimed_by != worker_id:
            lazy_logger.debug(
                lambda: f"dispatch: skip {entry.id} (status={entry.status}, claimed_by={entry.claimed_by})"
            )
            return entry.status

        policy = policy or await load_policy(session, entry.tenant_id)
        sender = self.registry.get(entry.channel)

        if not policy.channel_enabled(entry.channel) or sender is None:
            await self._queue.mark_failed(
                session,
                entry,
                FailureReason.CHANNEL_DISABLED,
                detail=(
                    f"channel {entry.channel!r} disabled for tenant"
                    if sender is not None
                    else f"no sender registered for channel {entry.channel!r}"
                ),
                worker_id=worker_id,
                now=now,
            )
            return entry.status

        try:
            content = load_content(entry.content or {})
        except ValidationError as exc:
            await self._queue.mark_failed(
                session,
                entry,
                FailureReason.PERMANENT_FAILURE,
                detail=f"stored content is invalid: {exc.error_count()} errors",
                worker_id=worker_id,
                now=now,
            )
            return entry.status

        if isinstance(sender, WebhookChannelSender):
            webhook = await resolve_webhook(session, entry.tenant_id, entry.address)
            if webhook is not None:
                sender = sender.bind(webhook, entry)

        if visibility_timeout is None:
            visibility_timeout = get_dispatch_settings().visibility_timeout_seconds
        renewed = await self._queue.renew_claim(
            session, entry, worker_id=worker_id, visibility_timeout=visibility_timeout, now=now
        )
        if not renewed:
            lazy_logger.debug(lambda: f"dispatch: claim on {entry.id} lost before send")
            return entry.status

        with tracer.start_as_current_span("notification.dispatch") as span:
            span.set_attribute("notification.channel", entry.channel)
            span.set_attribute("notification.tenant_id", entry.tenant_id)
            span.set_attribute("notification.attempt", entry.attempt_count)
            outcome = await self._send(sender, entry, content)
            span.set_attribute("notification.outcome", type(outcome).__name__)

        now = now or datetime.now(UTC)

        if isinstance(outcome, Delivered):
            notification_dispatch_total.labels(channel=entry.channel, outcome="delivered").inc()
            recorded = await self._queue.mark_delivered(
                session,
                entry,
                worker_id=worker_id,
                provider=outcome.provider or sender.name,
                provider_message_id=outcome.provider_message_id,
                details=outcome.metadata or None,
                now=now,
            )
            if not recorded:
                await session.refresh(entry)
                logger.warning(
                    "Delivered after losing the claim; outcome left to the new owner",
                    extra={
                        "tenant_id": entry.tenant_id,
                        "entry_id": str(entry.id),
                        "channel": entry.channel,
                        "status": entry.status,
                        "operation": "dispatch.delivered",
                    },
                )
                return entry.status
            logger.info(
                "Notification delivered",
                extra={
                    "tenant_id": entry.tenant_id,
                    "entry_id": str(entry.id),
                    "channel": entry.channel,
                    "provider": outcome.provider or sender.name,
                    "attempt": entry.attempt_count,
                    "operation": "dispatch.delivered",
                },
            )
            return entry.status

        if isinstance(outcome, PermanentFailure):
            notification_dispatch_total.labels(
                channel=entry.channel, outcome="permanent_failure"
            ).inc()
            await self._queue.mark_failed(
                session,
                entry,
                FailureReason.PERMANENT_FAILURE,
                detail=outcome.reason,
                worker_id=worker_id,
                provider=outcome.provider or sender.name,
                http_status=outcome.status_code,
                now=now,
            )
            return entry.status

        notification_dispatch_total.labels(channel=entry.channel, outcome="transient_failure").inc()
        logger.warning(
            "Transient delivery failure",
            extra={
                "tenant_id": entry.tenant_id,
                "entry_id": str(entry.id),
                "channel": entry.channel,
                "attempt": entry.attempt_count,
                "error": outcome.reason,
                "operation": "dispatch.transient_failure",
            },
        )
        return await self._retry.handle_transient(
            session, entry, outcome, policy, worker_id=worker_id, now=now
        )

    async def _send(self, sender: ChannelSender, entry: QueueEntry, content: object) -> SendResult:
        """Invoke the sender under a timeout; anything unexpected is transient."""
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                sender.send(entry.channel, entry.address, content),  # type: ignore[arg-type]
                timeout=self.send_timeout,
            )
        except TimeoutError:
            return TransientFailure(
                reason=f"sender timed out after {self.send_timeout:g}s", provider=sender.name
            )
        except Exception as exc:
            logger.exception(
                "Channel sender raised",
                extra={
                    "entry_id": str(entry.id),
                    "channel": entry.channel,
                    "provider": sender.name,
                    "operation": "dispatch.send",
                },
            )
            return TransientFailure(reason=f"{type(exc).__name__}: {exc}", provider=sender.name)
        finally:
            notification_dispatch_duration_seconds.labels(channel=entry.channel).observe(
                time.perf_counter() - start
            )


_dispatcher: ChannelDispatcher | None = None


def get_channel_dispatcher() -> ChannelDispatcher:
    """Get or create the singleton ChannelDispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ChannelDispatcher()
    return _dispatcher


def set_channel_dispatcher(dispatcher: ChannelDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher


__all__ = ["ChannelDispatcher", "get_channel_dispatcher", "set_channel_dispatcher"]
