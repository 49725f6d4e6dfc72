"""Webhook delivery engine.

Publishing an event fans it out into one ``webhook_deliveries`` row per
subscribed webhook of the tenant; the body is rendered and frozen at that
point. Workers claim due rows exactly like notification queue entries
(compare-and-set ``pending -> in_flight`` with a visibility timeout),
POST them with a per-tenant concurrency cap and record one DeliveryEvent
per attempt.

Failure handling:
    - non-2xx, timeout, network error: retry with exponential backoff
      until the delivery's ``max_attempts`` is spent, then ``failed``
    - webhook deleted or inactive: ``failed/channel_disabled``, no retry
    - each exhausted delivery bumps the webhook's ``consecutive_failures``;
      at ``auto_disable_after`` the webhook is deactivated. Any success
      resets the counter.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from sqlalchemy import and_, or_, select, update

from notify_service.core.database import dialect_insert, generate_uuid7
from notify_service.core.settings import get_webhook_settings
from notify_service.features.notifications.enums import (
    Channel,
    EntryKind,
    EntryStatus,
    EventType,
    FailureReason,
)
from notify_service.features.notifications.exceptions import InvalidTransition
from notify_service.features.notifications.policy import load_policy
from notify_service.features.notifications.tracker import DeliveryTracker, get_delivery_tracker
from notify_service.features.webhooks.client import WebhookClient, WebhookDeliveryResult
from notify_service.features.webhooks.events import (
    TEST_EVENT_TYPE,
    build_payload,
    canonical_body,
    generate_event_id,
)
from notify_service.features.webhooks.metrics import (
    webhook_auto_disabled_total,
    webhook_deliveries_total,
    webhook_delivery_duration_seconds,
    webhook_events_published_total,
    webhook_inflight,
)
from notify_service.features.webhooks.models import Webhook, WebhookDelivery
from notify_service.features.webhooks.repository import (
    WebhookRepository,
    get_webhook_repository,
)
from notify_service.infra.logging import get_lazy_logger
from notify_service.utils.retry import RetryStrategy

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.settings import WebhookSettings
    from notify_service.features.notifications.policy import TenantPolicy

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)
tracer = trace.get_tracer(__name__)

CHANNEL = Channel.WEBHOOK.value


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class PublishResult:
    """Deliveries created by one publish; ``duplicates`` were already queued for this event id."""

    event_id: str
    deliveries: list[WebhookDelivery] = field(default_factory=list)
    duplicates: int = 0


class WebhookDeliveryEngine:
    """Fan-out, claim and delivery of outbound webhook calls."""

    def __init__(
        self,
        client: WebhookClient | None = None,
        tracker: DeliveryTracker | None = None,
        *,
        settings: WebhookSettings | None = None,
        webhook_repository: WebhookRepository | None = None,
    ) -> None:
        self.settings = settings or get_webhook_settings()
        self._client = client or WebhookClient(self.settings)
        self._tracker = tracker or get_delivery_tracker()
        self._webhooks = webhook_repository or get_webhook_repository()
        self._semaphores: dict[str, asyncio.Semaphore] = {}

    @property
    def client(self) -> WebhookClient:
        return self._client

    def retry_strategy(self, max_attempts: int) -> RetryStrategy:
        """Backoff between attempts: ``retry_delay * 2^(n-1)`` capped, no jitter."""
        return RetryStrategy(
            max_attempts=max_attempts,
            initial_delay=self.settings.retry_delay_seconds,
            max_delay=self.settings.retry_max_delay_seconds,
            exponential_base=2.0,
            jitter=False,
        )

    def semaphore(self, tenant_id: str) -> asyncio.Semaphore:
        """Per-tenant cap on concurrent HTTP calls."""
        semaphore = self._semaphores.get(tenant_id)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.settings.per_tenant_concurrency)
            self._semaphores[tenant_id] = semaphore
        return semaphore

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def publish(
        self,
        session: AsyncSession,
        tenant_id: str,
        event_type: str,
        data: dict[str, Any],
        *,
        event_id: str | None = None,
        now: datetime | None = None,
    ) -> PublishResult:
        """Create one pending delivery per subscribed webhook of ``tenant_id``.

        Publishing the same ``event_id`` twice never creates a second
        delivery for a webhook.
        """
        now = now or _utcnow()
        event_id = event_id or generate_event_id(event_type)
        result = PublishResult(event_id=event_id)
        webhook_events_published_total.labels(event_type=event_type).inc()

        webhooks = await self._webhooks.find_subscribed(session, tenant_id, event_type)
        if not webhooks:
            lazy_logger.debug(
                lambda: f"engine.publish: tenant={tenant_id}, event_type={event_type!r} -> no subscribed webhooks"
            )
            return result

        policy = await load_policy(session, tenant_id)
        body = canonical_body(build_payload(event_type, event_id, data, timestamp=now))
        if len(body.encode("utf-8")) > self.settings.max_payload_size_bytes:
            msg = f"Webhook payload exceeds {self.settings.max_payload_size_bytes} bytes"
            raise ValueError(msg)

        for webhook in webhooks:
            delivery_id = generate_uuid7()
            stmt = (
                dialect_insert(session, WebhookDelivery)
                .values(
                    id=delivery_id,
                    webhook_id=webhook.id,
                    tenant_id=tenant_id,
                    event_type=event_type,
                    event_id=event_id,
                    body=body,
                    status=EntryStatus.PENDING.value,
                    attempt_count=0,
                    max_attempts=webhook.max_retries or policy.webhook_retry_attempts,
                    next_attempt_at=now,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["webhook_id", "event_id"])
            )
            if (await session.execute(stmt)).rowcount != 1:
                result.duplicates += 1
                continue

            delivery = await session.get(WebhookDelivery, delivery_id)
            if delivery is None:
                msg = f"Webhook delivery {delivery_id} vanished after insert"
                raise RuntimeError(msg)
            await self._record(
                session,
                delivery,
                EventType.QUEUED,
                from_status=None,
                to_status=EntryStatus.PENDING,
                attempt=0,
                occurred_at=now,
            )
            result.deliveries.append(delivery)

        logger.info(
            "Event published to webhooks",
            extra={
                "tenant_id": tenant_id,
                "event_type": event_type,
                "event_id": event_id,
                "webhook_count": len(webhooks),
                "delivery_count": len(result.deliveries),
                "duplicates": result.duplicates,
                "operation": "engine.publish",
            },
        )
        return result

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def release_expired(self, session: AsyncSession, *, now: datetime | None = None) -> int:
        """Return deliveries whose claim lapsed to ``pending`` (or fail them when out of attempts)."""
        now = now or _utcnow()
        stmt = (
            select(WebhookDelivery)
            .where(
                WebhookDelivery.status == EntryStatus.IN_FLIGHT.value,
                WebhookDelivery.claimed_until < now,
            )
            .execution_options(populate_existing=True)
        )
        stale = (await session.execute(stmt)).scalars().all()

        released = 0
        for delivery in stale:
            if delivery.attempt_count >= delivery.max_attempts:
                moved = await self._exhaust(
                    session,
                    delivery,
                    detail="visibility timeout on final attempt",
                    where=(WebhookDelivery.claimed_until < now,),
                    now=now,
                )
            else:
                moved = await self._transition(
                    session,
                    delivery,
                    expected=(EntryStatus.IN_FLIGHT,),
                    to_status=EntryStatus.PENDING,
                    event_type=EventType.RELEASED,
                    values={"claimed_by": None, "claimed_until": None, "next_attempt_at": now},
                    where=(WebhookDelivery.claimed_until < now,),
                    reason="visibility_timeout",
                    detail=f"claim by {delivery.claimed_by} expired",
                    now=now,
                )
            if moved:
                released += 1

        if released:
            logger.warning(
                "Released webhook deliveries after visibility timeout",
                extra={"count": released, "operation": "engine.release_expired"},
            )
        return released

    async def claim_batch(
        self,
        session: AsyncSession,
        worker_id: str,
        limit: int,
        *,
        visibility_timeout: float | None = None,
        now: datetime | None = None,
    ) -> list[WebhookDelivery]:
        """Claim up to ``limit`` due deliveries, oldest first. Caller commits."""
        now = now or _utcnow()
        await self.release_expired(session, now=now)

        stmt = (
            select(WebhookDelivery)
            .where(
                WebhookDelivery.status == EntryStatus.PENDING.value,
                WebhookDelivery.next_attempt_at <= now,
            )
            .order_by(WebhookDelivery.next_attempt_at, WebhookDelivery.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        if session.get_bind().dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        candidates = (await session.execute(stmt)).scalars().all()

        timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else self.settings.visibility_timeout_seconds
        )
        claimed_until = now + timedelta(seconds=timeout)
        claimed: list[WebhookDelivery] = []
        for delivery in candidates:
            result = await session.execute(
                update(WebhookDelivery)
                .where(
                    WebhookDelivery.id == delivery.id,
                    WebhookDelivery.status == EntryStatus.PENDING.value,
                )
                .values(
                    status=EntryStatus.IN_FLIGHT.value,
                    claimed_by=worker_id,
                    claimed_until=claimed_until,
                    attempt_count=WebhookDelivery.attempt_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                lazy_logger.debug(lambda: f"engine.claim: lost race for {delivery.id}")
                continue
            await session.refresh(delivery)
            claimed.append(delivery)

        if claimed:
            lazy_logger.debug(
                lambda: f"engine.claim_batch({worker_id}) -> {len(claimed)}/{len(candidates)} claimed"
            )
        return claimed

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(
        self,
        webhook: Webhook,
        *,
        body: str,
        event_type: str,
        event_id: str,
        delivery_id: str,
        timeout_seconds: float | None = None,
    ) -> WebhookDeliveryResult:
        """One HTTP call under the tenant's concurrency cap."""
        async with self.semaphore(webhook.tenant_id):
            return await self._post(
                webhook,
                body=body,
                event_type=event_type,
                event_id=event_id,
                delivery_id=delivery_id,
                timeout_seconds=timeout_seconds,
            )

    async def _post(
        self,
        webhook: Webhook,
        *,
        body: str,
        event_type: str,
        event_id: str,
        delivery_id: str,
        timeout_seconds: float | None = None,
    ) -> WebhookDeliveryResult:
        webhook_inflight.inc()
        start = time.perf_counter()
        try:
            return await self._client.deliver(
                webhook,
                body=body,
                event_type=event_type,
                event_id=event_id,
                delivery_id=delivery_id,
                timeout_seconds=timeout_seconds,
            )
        finally:
            webhook_inflight.dec()
            webhook_delivery_duration_seconds.observe(time.perf_counter() - start)

    async def renew_claim(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        *,
        worker_id: str,
        visibility_timeout: float | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Push ``claimed_until`` out by a full visibility timeout and commit.

        Only succeeds while ``worker_id`` still holds the claim. The commit
        makes the new deadline visible to other workers' release passes
        before the HTTP call starts.
        """
        timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else self.settings.visibility_timeout_seconds
        )
        now = now or _utcnow()
        result = await session.execute(
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery.id,
                WebhookDelivery.status == EntryStatus.IN_FLIGHT.value,
                WebhookDelivery.claimed_by == worker_id,
            )
            .values(claimed_until=now + timedelta(seconds=timeout))
            .execution_options(synchronize_session=False)
        )
        renewed = result.rowcount == 1
        await session.commit()
        await session.refresh(delivery)
        return renewed

    async def deliver(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        *,
        worker_id: str,
        policy: TenantPolicy | None = None,
        visibility_timeout: float | None = None,
        now: datetime | None = None,
    ) -> str:
        """Make one attempt for a claimed delivery. Returns the resulting status.

        The claim is checked again once a tenant slot is free, since the
        wait for the semaphore can outlast the visibility timeout. The
        outcome is only written while ``worker_id`` still owns the row, or
        when a release pass has returned it to pending unclaimed.
        """
        await session.refresh(delivery)
        if delivery.status != EntryStatus.IN_FLIGHT.value or delivery.claimed_by != worker_id:
            return self._skipped(delivery, worker_id)

        webhook = await self._webhooks.get(session, delivery.webhook_id)
        if webhook is None or not webhook.is_active:
            await self._transition(
                session,
                delivery,
                expected=(EntryStatus.IN_FLIGHT,),
                to_status=EntryStatus.FAILED,
                event_type=EventType.FAILED,
                values={
                    "claimed_by": None,
                    "claimed_until": None,
                    "failure_reason": FailureReason.CHANNEL_DISABLED.value,
                    "last_error": "webhook deleted or inactive",
                },
                where=(WebhookDelivery.claimed_by == worker_id,),
                reason=FailureReason.CHANNEL_DISABLED.value,
                detail="webhook deleted or inactive",
                now=now,
            )
            webhook_deliveries_total.labels(outcome="failed").inc()
            return delivery.status

        policy = policy or await load_policy(session, delivery.tenant_id)
        timeout = webhook.timeout_seconds or policy.webhook_timeout_seconds

        with tracer.start_as_current_span("webhook.deliver") as span:
            span.set_attribute("webhook.id", str(webhook.id))
            span.set_attribute("webhook.tenant_id", webhook.tenant_id)
            span.set_attribute("webhook.event_type", delivery.event_type)
            span.set_attribute("webhook.attempt", delivery.attempt_count)
            async with self.semaphore(webhook.tenant_id):
                renewed = await self.renew_claim(
                    session,
                    delivery,
                    worker_id=worker_id,
                    visibility_timeout=visibility_timeout,
                    now=now,
                )
                if not renewed:
                    span.set_attribute("webhook.skipped", True)
                    return self._skipped(delivery, worker_id)
                result = await self._post(
                    webhook,
                    body=delivery.body,
                    event_type=delivery.event_type,
                    event_id=delivery.event_id,
                    delivery_id=str(delivery.id),
                    timeout_seconds=timeout,
                )
            span.set_attribute("webhook.success", result.success)

        now = now or _utcnow()
        response_fields = {
            "response_status_code": result.status_code,
            "response_body": result.response_body,
            "response_time_ms": result.response_time_ms,
        }

        if result.success:
            recorded = await self._transition(
                session,
                delivery,
                expected=(EntryStatus.IN_FLIGHT, EntryStatus.PENDING),
                to_status=EntryStatus.DELIVERED,
                event_type=EventType.DELIVERED,
                values={
                    **response_fields,
                    "claimed_by": None,
                    "claimed_until": None,
                    "delivered_at": now,
                    "last_error": None,
                },
                where=(
                    or_(
                        and_(
                            WebhookDelivery.status == EntryStatus.IN_FLIGHT.value,
                            WebhookDelivery.claimed_by == worker_id,
                        ),
                        and_(
                            WebhookDelivery.status == EntryStatus.PENDING.value,
                            WebhookDelivery.claimed_by.is_(None),
                        ),
                    ),
                ),
                http_status=result.status_code,
                details={"webhook_id": str(webhook.id), "response_time_ms": result.response_time_ms},
                now=now,
            )
            if not recorded:
                await session.refresh(delivery)
                return self._skipped(delivery, worker_id)
            await self._record_success(session, webhook, now=now)
            webhook_deliveries_total.labels(outcome="delivered").inc()
            return delivery.status

        error = result.error_message or "delivery failed"
        if delivery.attempt_count >= delivery.max_attempts:
            await self._exhaust(
                session,
                delivery,
                detail=f"{delivery.attempt_count} attempts; last error: {error}",
                extra_values=response_fields,
                http_status=result.status_code,
                worker_id=worker_id,
                now=now,
            )
            return delivery.status

        delay = self.retry_strategy(delivery.max_attempts).delay_for(delivery.attempt_count)
        next_attempt_at = now + timedelta(seconds=delay)
        moved = await self._transition(
            session,
            delivery,
            expected=(EntryStatus.IN_FLIGHT,),
            to_status=EntryStatus.PENDING,
            event_type=EventType.RETRY_SCHEDULED,
            values={
                **response_fields,
                "claimed_by": None,
                "claimed_until": None,
                "next_attempt_at": next_attempt_at,
                "last_error": error[:2000],
            },
            where=(WebhookDelivery.claimed_by == worker_id,),
            reason="transient_failure",
            detail=error,
            http_status=result.status_code,
            details={"next_attempt_at": next_attempt_at.isoformat()},
            now=now,
        )
        if moved:
            webhook_deliveries_total.labels(outcome="retry_scheduled").inc()
            logger.info(
                "Webhook retry scheduled",
                extra={
                    "tenant_id": delivery.tenant_id,
                    "delivery_id": str(delivery.id),
                    "webhook_id": str(webhook.id),
                    "attempt": delivery.attempt_count,
                    "max_attempts": delivery.max_attempts,
                    "delay_seconds": delay,
                    "error": error,
                    "operation": "engine.retry",
                },
            )
        return delivery.status

    async def ping(self, webhook: Webhook, data: dict[str, Any] | None = None) -> WebhookDeliveryResult:
        """Send a one-off signed test event. Nothing is persisted or retried."""
        event_id = generate_event_id(TEST_EVENT_TYPE)
        body = canonical_body(build_payload(TEST_EVENT_TYPE, event_id, data or {"ping": True}))
        return await self.send(
            webhook,
            body=body,
            event_type=TEST_EVENT_TYPE,
            event_id=event_id,
            delivery_id=str(generate_uuid7()),
        )

    async def retry(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        *,
        now: datetime | None = None,
    ) -> WebhookDelivery:
        """Send a failed delivery back to ``pending`` with a fresh attempt budget.

        Raises:
            InvalidTransition: If the delivery is not failed.
        """
        now = now or _utcnow()
        moved = await self._transition(
            session,
            delivery,
            expected=(EntryStatus.FAILED,),
            to_status=EntryStatus.PENDING,
            event_type=EventType.REQUEUED,
            values={
                "attempt_count": 0,
                "next_attempt_at": now,
                "failure_reason": None,
            },
            reason="manual_retry",
            detail=delivery.failure_reason,
            attempt=0,
            now=now,
        )
        if not moved:
            raise InvalidTransition(str(delivery.id), delivery.status, "retry")

        logger.info(
            "Webhook delivery retry requested",
            extra={
                "tenant_id": delivery.tenant_id,
                "delivery_id": str(delivery.id),
                "operation": "engine.retry_delivery",
            },
        )
        return delivery

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _exhaust(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        *,
        detail: str,
        extra_values: dict[str, Any] | None = None,
        http_status: int | None = None,
        worker_id: str | None = None,
        where: Sequence[Any] = (),
        now: datetime | None = None,
    ) -> bool:
        now = now or _utcnow()
        if worker_id:
            where = (*where, WebhookDelivery.claimed_by == worker_id)
        moved = await self._transition(
            session,
            delivery,
            expected=(EntryStatus.IN_FLIGHT,),
            to_status=EntryStatus.FAILED,
            event_type=EventType.FAILED,
            values={
                **(extra_values or {}),
                "claimed_by": None,
                "claimed_until": None,
                "failure_reason": FailureReason.RETRIES_EXHAUSTED.value,
                "last_error": detail[:2000],
            },
            where=where,
            reason=FailureReason.RETRIES_EXHAUSTED.value,
            detail=detail,
            http_status=http_status,
            now=now,
        )
        if not moved:
            return False

        webhook_deliveries_total.labels(outcome="failed").inc()
        logger.warning(
            "Webhook delivery failed after retries",
            extra={
                "tenant_id": delivery.tenant_id,
                "delivery_id": str(delivery.id),
                "webhook_id": str(delivery.webhook_id),
                "event_type": delivery.event_type,
                "attempts": delivery.attempt_count,
                "operation": "engine.exhaust",
            },
        )
        await self._record_exhaustion(session, delivery.webhook_id, now=now)
        return True

    async def _record_success(self, session: AsyncSession, webhook: Webhook, *, now: datetime) -> None:
        await session.execute(
            update(Webhook)
            .where(Webhook.id == webhook.id)
            .values(consecutive_failures=0, last_delivery_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(webhook)

    async def _record_exhaustion(self, session: AsyncSession, webhook_id: Any, *, now: datetime) -> None:
        """Bump the failure streak and trip the circuit breaker at the threshold."""
        await session.execute(
            update(Webhook)
            .where(Webhook.id == webhook_id)
            .values(consecutive_failures=Webhook.consecutive_failures + 1)
            .execution_options(synchronize_session=False)
        )
        webhook = await session.get(Webhook, webhook_id, populate_existing=True)
        if webhook is None:
            return

        threshold = self.settings.auto_disable_after
        if threshold <= 0 or not webhook.is_active or webhook.consecutive_failures < threshold:
            return

        reason = f"auto-disabled after {webhook.consecutive_failures} consecutive failed deliveries"
        result = await session.execute(
            update(Webhook)
            .where(Webhook.id == webhook_id, Webhook.is_active.is_(True))
            .values(is_active=False, disabled_at=now, disabled_reason=reason)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return
        await session.refresh(webhook)

        webhook_auto_disabled_total.inc()
        logger.warning(
            "Webhook auto-disabled",
            extra={
                "tenant_id": webhook.tenant_id,
                "webhook_id": str(webhook.id),
                "url": webhook.url,
                "consecutive_failures": webhook.consecutive_failures,
                "operation": "engine.auto_disable",
            },
        )

    def _skipped(self, delivery: WebhookDelivery, worker_id: str) -> str:
        webhook_deliveries_total.labels(outcome="skipped").inc()
        lazy_logger.debug(
            lambda: f"engine.deliver: {delivery.id} no longer claimed by {worker_id} ({delivery.status})"
        )
        return delivery.status

    async def _transition(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
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
        result = await session.execute(
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery.id,
                WebhookDelivery.status.in_([s.value for s in expected]),
                *where,
            )
            .values(status=to_status.value, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            lazy_logger.debug(
                lambda: f"engine.transition({delivery.id}) -> {to_status.value} rejected (status changed)"
            )
            return False

        from_status = expected[0].value if len(expected) == 1 else delivery.status
        await session.refresh(delivery)
        await self._record(
            session,
            delivery,
            event_type,
            from_status=from_status,
            to_status=to_status,
            occurred_at=now,
            **event_fields,
        )
        return True

    async def _record(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        event_type: EventType,
        *,
        to_status: EntryStatus,
        from_status: str | None,
        **fields: Any,
    ) -> None:
        await self._tracker.record(
            session,
            tenant_id=delivery.tenant_id,
            entry_id=delivery.id,
            channel=CHANNEL,
            type_code=delivery.event_type,
            event_type=event_type,
            to_status=to_status,
            from_status=from_status,
            entry_kind=EntryKind.WEBHOOK,
            attempt=fields.pop("attempt", delivery.attempt_count),
            **fields,
        )


_engine: WebhookDeliveryEngine | None = None


def get_webhook_engine() -> WebhookDeliveryEngine:
    """Get or create the singleton WebhookDeliveryEngine instance."""
    global _engine
    if _engine is None:
        _engine = WebhookDeliveryEngine()
    return _engine


def set_webhook_engine(engine: WebhookDeliveryEngine | None) -> None:
    global _engine
    _engine = engine


__all__ = ["PublishResult", "WebhookDeliveryEngine", "get_webhook_engine", "set_webhook_engine"]
