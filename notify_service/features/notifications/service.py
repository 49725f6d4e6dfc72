"""Notification service: submission, producer events and tenant-facing operations.

Everything synchronous about a notification happens here: validation,
template resolution, rendering, the preference decision and the enqueue.
Delivery happens later in the dispatch workers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from notify_service.core.database import generate_uuid7
from notify_service.core.exceptions import BadRequestException, NotFoundException, ValidationException
from notify_service.core.services import BaseService
from notify_service.features.notifications.channels import resolve_webhook
from notify_service.features.notifications.content import dump_content
from notify_service.features.notifications.enums import (
    Channel,
    ComplianceAction,
    EntryStatus,
    EventType,
    FailureReason,
    Priority,
)
from notify_service.features.notifications.exceptions import (
    InvalidTransition,
    TemplateMissing,
    TemplateSyntaxInvalid,
)
from notify_service.features.notifications.metrics import (
    notification_deferred_total,
    notification_rejected_total,
    notification_submitted_total,
)
from notify_service.features.notifications.models import ComplianceEvent, QueueEntry
from notify_service.features.notifications.policy import build_policy, load_policy
from notify_service.features.notifications.preferences import (
    Deferred,
    PreferenceFilter,
    Suppressed,
    get_preference_filter,
    preferred_language,
)
from notify_service.features.notifications.queue import DispatchQueue, get_dispatch_queue
from notify_service.features.notifications.repository import (
    get_compliance_event_repository,
    get_delivery_event_repository,
    get_queue_entry_repository,
    get_recipient_preference_repository,
    get_tenant_config_repository,
)
from notify_service.features.notifications.templates import (
    TemplateService,
    get_template_service,
)
from notify_service.features.webhooks.client import ensure_public_url

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.database import SearchResult
    from notify_service.features.notifications.models import (
        DeliveryEvent,
        RecipientPreference,
        TenantNotificationConfig,
    )
    from notify_service.features.notifications.policy import TenantPolicy
    from notify_service.features.notifications.schemas import (
        NotificationSubmit,
        PreferenceUpsert,
        ProducerEvent,
        TenantConfigUpdate,
    )


@dataclass(frozen=True, slots=True)
class SubmitOutcome:
    """Stored entry plus whether this call created it."""

    entry: QueueEntry
    created: bool

    @property
    def deduplicated(self) -> bool:
        return not self.created


@dataclass(frozen=True, slots=True)
class _Request:
    """One (recipient, channel) notification, from either entry point."""

    tenant_id: str
    recipient_type: str
    recipient_id: str
    address: str
    channel: str
    type_code: str
    variables: dict[str, Any]
    priority: Priority
    scheduled_for: datetime | None
    expires_at: datetime | None
    language: str | None
    idempotency_key: str
    event_id: str | None


def _idempotency_key(explicit: str | None, event_id: str | None, channel: str) -> str:
    if explicit:
        return explicit
    if event_id:
        return f"{event_id}:{channel}"
    return generate_uuid7().hex


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class NotificationService(BaseService):
    """Accepts notifications and exposes queue, preference and tenant operations.

    Two entry points share one pipeline:

    - :meth:`submit` (ingestion API) rejects bad input synchronously.
    - :meth:`ingest_event` (producer events) never rejects a single
      channel; unresolvable channels are stored as ``dead`` or ``failed``
      so the producer's event is fully accounted for.
    """

    def __init__(
        self,
        queue: DispatchQueue | None = None,
        templates: TemplateService | None = None,
        preferences: PreferenceFilter | None = None,
    ) -> None:
        super().__init__()
        self._queue = queue or get_dispatch_queue()
        self._templates = templates or get_template_service()
        self._preferences = preferences or get_preference_filter()
        self._entries = get_queue_entry_repository()
        self._events = get_delivery_event_repository()
        self._preference_repo = get_recipient_preference_repository()
        self._config_repo = get_tenant_config_repository()
        self._compliance_repo = get_compliance_event_repository()

    @property
    def queue(self) -> DispatchQueue:
        return self._queue

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        session: AsyncSession,
        tenant_id: str,
        data: NotificationSubmit,
        *,
        now: datetime | None = None,
    ) -> SubmitOutcome:
        """Validate, render, filter and enqueue one notification.

        Raises:
            ValidationException: Past ``scheduled_for``, bad expiry, disabled
                channel or no resolvable template. Nothing is queued.
        """
        now = now or datetime.now(UTC)
        request = _Request(
            tenant_id=tenant_id,
            recipient_type=data.recipient.type,
            recipient_id=data.recipient.id,
            address=data.address,
            channel=data.channel.value,
            type_code=data.type_code,
            variables=data.variables,
            priority=data.priority_value,
            scheduled_for=data.scheduled_for,
            expires_at=data.expires_at,
            language=data.language,
            idempotency_key=_idempotency_key(
                data.idempotency_key, data.event_id, data.channel.value
            ),
            event_id=data.event_id,
        )
        self._validate_schedule(request, now)
        policy = await load_policy(session, tenant_id)

        if not policy.channel_enabled(request.channel):
            self._reject("channel_disabled", request)
            raise ValidationException(
                detail=f"Channel {request.channel!r} is disabled for this tenant",
                type="channel-disabled",
                extra={"channel": request.channel},
            )

        return await self._process(session, request, policy, now=now, strict=True)

    async def ingest_event(
        self,
        session: AsyncSession,
        event: ProducerEvent,
        *,
        now: datetime | None = None,
    ) -> list[SubmitOutcome]:
        """Fan a producer event out to one entry per addressed channel.

        Raises:
            ValidationException: If the event's schedule is invalid.
        """
        now = now or datetime.now(UTC)
        policy = await load_policy(session, event.tenant_id)
        prefs = await self._preferences.load(
            session, event.tenant_id, event.recipient.type, event.recipient.id
        )

        outcomes: list[SubmitOutcome] = []
        for channel, address in event.addresses.items():
            request = _Request(
                tenant_id=event.tenant_id,
                recipient_type=event.recipient.type,
                recipient_id=event.recipient.id,
                address=address,
                channel=channel.value,
                type_code=event.type_code,
                variables=event.variables,
                priority=Priority.parse(event.priority),
                scheduled_for=event.scheduled_for,
                expires_at=event.expires_at,
                language=event.language,
                idempotency_key=_idempotency_key(None, event.event_id, channel.value),
                event_id=event.event_id,
            )
            self._validate_schedule(request, now)
            outcomes.append(
                await self._process(session, request, policy, now=now, strict=False, prefs=prefs)
            )

        self.logger.info(
            "Producer event ingested",
            extra={
                "tenant_id": event.tenant_id,
                "event_id": event.event_id,
                "type_code": event.type_code,
                "channels": [o.entry.channel for o in outcomes],
                "created": sum(o.created for o in outcomes),
                "operation": "notification.ingest_event",
            },
        )
        return outcomes

    def _validate_schedule(self, request: _Request, now: datetime) -> None:
        if request.scheduled_for is not None and request.scheduled_for <= now:
            self._reject("scheduled_in_past", request)
            raise ValidationException(
                detail="scheduled_for must be in the future",
                type="scheduled-in-past",
                extra={"scheduled_for": request.scheduled_for.isoformat()},
            )
        if request.expires_at is not None:
            floor = request.scheduled_for or now
            if request.expires_at <= floor:
                self._reject("expires_before_send", request)
                raise ValidationException(
                    detail="expires_at must be after the send time",
                    type="expires-before-send",
                    extra={"expires_at": request.expires_at.isoformat()},
                )

    def _reject(self, reason: str, request: _Request) -> None:
        notification_rejected_total.labels(reason=reason).inc()
        self.logger.info(
            "Notification rejected",
            extra={
                "tenant_id": request.tenant_id,
                "type_code": request.type_code,
                "channel": request.channel,
                "reason": reason,
                "operation": "notification.submit",
            },
        )

    async def _process(
        self,
        session: AsyncSession,
        request: _Request,
        policy: TenantPolicy,
        *,
        now: datetime,
        strict: bool,
        prefs: Sequence[RecipientPreference] | None = None,
    ) -> SubmitOutcome:
        entry = QueueEntry(
            id=generate_uuid7(),
            tenant_id=request.tenant_id,
            idempotency_key=request.idempotency_key,
            source_event_id=request.event_id,
            recipient_type=request.recipient_type,
            recipient_id=request.recipient_id,
            address=request.address,
            channel=request.channel,
            type_code=request.type_code,
            priority=int(request.priority),
            status=EntryStatus.PENDING.value,
            max_attempts=policy.attempts_for(request.channel),
            scheduled_for=request.scheduled_for,
            expires_at=request.expires_at,
            next_eligible_at=request.scheduled_for or now,
        )

        if not policy.channel_enabled(request.channel):
            return await self._store_terminal(
                session,
                entry,
                EntryStatus.FAILED,
                FailureReason.CHANNEL_DISABLED,
                event_type=EventType.FAILED,
                detail=f"channel {request.channel!r} disabled for tenant",
            )

        if request.channel == Channel.WEBHOOK.value:
            refusal = await self._webhook_target_refusal(session, request)
            if refusal is not None:
                if strict:
                    self._reject("webhook_not_registered", request)
                    raise ValidationException(
                        detail=refusal,
                        type="webhook-not-registered",
                        extra={"address": request.address},
                    )
                return await self._store_terminal(
                    session,
                    entry,
                    EntryStatus.FAILED,
                    FailureReason.PERMANENT_FAILURE,
                    event_type=EventType.FAILED,
                    detail=refusal,
                )

        if prefs is None:
            prefs = await self._preferences.load(
                session, request.tenant_id, request.recipient_type, request.recipient_id
            )
        language = request.language or preferred_language(prefs) or policy.default_language
        entry.language = language

        try:
            template = await self._templates.resolve(
                session,
                request.tenant_id,
                request.type_code,
                request.channel,
                language=language,
                default_language=policy.default_language,
            )
            rendered = self._templates.render(template, request.variables)
        except TemplateMissing as exc:
            if strict:
                self._reject("template_missing", request)
                raise ValidationException(
                    detail=exc.message,
                    type="template-missing",
                    extra={
                        "type_code": request.type_code,
                        "channel": request.channel,
                        "language": language,
                    },
                ) from exc
            return await self._store_terminal(
                session,
                entry,
                EntryStatus.DEAD,
                FailureReason.TEMPLATE_MISSING,
                event_type=EventType.DEAD,
                detail=exc.message,
            )
        except TemplateSyntaxInvalid as exc:
            if strict:
                self._reject("template_invalid", request)
                raise ValidationException(
                    detail=exc.message,
                    type="template-invalid",
                    extra={"field": exc.field, "type_code": request.type_code},
                ) from exc
            return await self._store_terminal(
                session,
                entry,
                EntryStatus.DEAD,
                FailureReason.PERMANENT_FAILURE,
                event_type=EventType.DEAD,
                detail=exc.message,
            )

        entry.template_id = template.id
        entry.category = template.category
        entry.content = dump_content(rendered.content)

        decision = await self._preferences.check(
            session,
            policy,
            recipient_type=request.recipient_type,
            recipient_id=request.recipient_id,
            type_code=request.type_code,
            category=template.category,
            channel=request.channel,
            requires_consent=template.requires_consent,
            now=entry.next_eligible_at,
            prefs=prefs,
        )

        if isinstance(decision, Suppressed):
            return await self._store_terminal(
                session,
                entry,
                EntryStatus.FAILED,
                decision.reason,
                event_type=EventType.SUPPRESSED,
                detail="recipient preferences",
            )

        event_type = EventType.QUEUED
        reason: str | None = None
        detail: str | None = None
        if isinstance(decision, Deferred) and decision.until > entry.next_eligible_at:
            entry.next_eligible_at = decision.until
            event_type = EventType.DEFERRED
            reason = "quiet_hours"
            detail = f"deferred until {decision.until.isoformat()}"

        stored, created = await self._queue.enqueue(
            session, entry, event_type=event_type, reason=reason, detail=detail
        )
        outcome = "deduplicated" if not created else event_type.value
        notification_submitted_total.labels(channel=request.channel, outcome=outcome).inc()
        if created and event_type is EventType.DEFERRED:
            notification_deferred_total.labels(channel=request.channel, reason="quiet_hours").inc()
        return SubmitOutcome(stored, created)

    async def _webhook_target_refusal(
        self, session: AsyncSession, request: _Request
    ) -> str | None:
        """Why a ``webhook`` channel address cannot be used, or None.

        The address must be the id of one of the tenant's active webhooks,
        whose URL must not point at an internal address.
        """
        webhook = await resolve_webhook(session, request.tenant_id, request.address)
        if webhook is None:
            return f"{request.address!r} is not an active registered webhook"
        try:
            ensure_public_url(webhook.url)
        except BadRequestException as exc:
            return exc.detail
        return None

    async def _store_terminal(
        self,
        session: AsyncSession,
        entry: QueueEntry,
        status: EntryStatus,
        reason: FailureReason,
        *,
        event_type: EventType,
        detail: str | None,
    ) -> SubmitOutcome:
        """Record an entry that is finished before it is ever queued."""
        entry.status = status.value
        entry.failure_reason = reason.value
        entry.last_error = detail
        stored, created = await self._queue.enqueue(
            session, entry, event_type=event_type, reason=reason.value, detail=detail
        )
        outcome = status.value if created else "deduplicated"
        if created and event_type is EventType.SUPPRESSED:
            outcome = "suppressed"
        notification_submitted_total.labels(channel=entry.channel, outcome=outcome).inc()
        return SubmitOutcome(stored, created)

    # ------------------------------------------------------------------
    # Queue entries
    # ------------------------------------------------------------------

    async def get_entry(self, session: AsyncSession, tenant_id: str, entry_id: UUID) -> QueueEntry:
        """Raises NotFoundException if the entry does not belong to the tenant."""
        entry = await self._entries.get_for_tenant(session, tenant_id, entry_id)
        if entry is None:
            raise NotFoundException(
                detail=f"Queue entry {entry_id} not found",
                type="queue-entry-not-found",
                extra={"entry_id": str(entry_id)},
            )
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        tenant_id: str,
        *,
        status: str | None = None,
        channel: str | None = None,
        recipient_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[QueueEntry]:
        stmt = self._entries.list_statement(
            tenant_id, status=status, channel=channel, recipient_id=recipient_id
        )
        return await self._entries.search(session, stmt, limit=limit, offset=offset)

    async def list_events(
        self,
        session: AsyncSession,
        tenant_id: str,
        *,
        entry_id: UUID | None = None,
        event_type: str | None = None,
        channel: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[DeliveryEvent]:
        stmt = self._events.list_statement(
            tenant_id,
            entry_id=entry_id,
            event_type=event_type,
            channel=channel,
            since=since,
            until=until,
        )
        return await self._events.search(session, stmt, limit=limit, offset=offset)

    async def entry_history(
        self, session: AsyncSession, tenant_id: str, entry_id: UUID
    ) -> Sequence[DeliveryEvent]:
        """Every event of one entry, oldest first."""
        entry = await self.get_entry(session, tenant_id, entry_id)
        return await self._events.list_for_entry(session, entry.id)

    async def cancel(self, session: AsyncSession, tenant_id: str, entry_id: UUID) -> QueueEntry:
        """Raises NotFoundException or InvalidTransition (terminal entry)."""
        entry = await self._queue.cancel(session, tenant_id, entry_id)
        if entry is None:
            raise NotFoundException(
                detail=f"Queue entry {entry_id} not found",
                type="queue-entry-not-found",
                extra={"entry_id": str(entry_id)},
            )
        return entry

    async def requeue(self, session: AsyncSession, tenant_id: str, entry_id: UUID) -> QueueEntry:
        """Raises NotFoundException or InvalidTransition (entry not dead)."""
        entry = await self._queue.requeue(session, tenant_id, entry_id)
        if entry is None:
            raise NotFoundException(
                detail=f"Queue entry {entry_id} not found",
                type="queue-entry-not-found",
                extra={"entry_id": str(entry_id)},
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
        return await self._queue.list_dead(
            session, tenant_id, channel=channel, limit=limit, offset=offset
        )

    async def record_engagement(
        self,
        session: AsyncSession,
        tenant_id: str,
        entry_id: UUID,
        kind: str,
        *,
        url: str | None = None,
    ) -> DeliveryEvent:
        """Append an open or click for a delivered entry.

        Raises:
            NotFoundException: Unknown entry.
            InvalidTransition: The entry was never delivered.
        """
        entry = await self.get_entry(session, tenant_id, entry_id)
        if entry.status != EntryStatus.DELIVERED.value:
            raise InvalidTransition(str(entry.id), entry.status, f"record {kind} for")
        return await self._queue.tracker.record_engagement(session, entry, kind, url=url)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def list_preferences(
        self, session: AsyncSession, tenant_id: str, recipient_type: str, recipient_id: str
    ) -> Sequence[RecipientPreference]:
        return await self._preferences.load(session, tenant_id, recipient_type, recipient_id)

    async def upsert_preference(
        self,
        session: AsyncSession,
        tenant_id: str,
        recipient_type: str,
        recipient_id: str,
        data: PreferenceUpsert,
        *,
        source: str = "api",
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> RecipientPreference:
        """Create or update one preference row.

        Opt-in, opt-out and consent changes are written to the compliance
        log in the same transaction.
        """
        now = now or datetime.now(UTC)
        fields: dict[str, Any] = {
            "opted_in": data.opted_in,
            "quiet_hours_start": data.quiet_hours_start,
            "quiet_hours_end": data.quiet_hours_end,
            "timezone": data.timezone,
            "language": data.language,
        }
        if data.consent_granted is True:
            fields["consent_granted_at"] = now
        elif data.consent_granted is False:
            fields["consent_granted_at"] = None

        channel = data.channel if isinstance(data.channel, str) else data.channel.value
        scope_fields = {
            "tenant_id": tenant_id,
            "recipient_type": recipient_type,
            "recipient_id": recipient_id,
            "scope_type": data.scope_type.value,
            "scope": data.scope,
            "channel": channel,
        }
        existing = await self._preference_repo.get_scope(session, **scope_fields)
        previous_opted_in = existing.opted_in if existing is not None else None
        previous_consent = existing.consent_granted_at if existing is not None else None

        pref = await self._preference_repo.upsert(session, **scope_fields, **fields)

        audit = {"source": source, "ip_address": ip_address, "user_agent": user_agent, "now": now}
        if previous_opted_in != pref.opted_in:
            await self._record_compliance(
                session,
                pref,
                ComplianceAction.OPTED_IN if pref.opted_in else ComplianceAction.OPTED_OUT,
                details={"previous_opted_in": previous_opted_in, "opted_in": pref.opted_in},
                **audit,
            )
        if data.consent_granted is True:
            await self._record_compliance(
                session,
                pref,
                ComplianceAction.CONSENT_GRANTED,
                details={
                    "previous_consent_granted_at": _isoformat(previous_consent),
                    "consent_granted_at": _isoformat(pref.consent_granted_at),
                },
                **audit,
            )
        elif data.consent_granted is False and previous_consent is not None:
            await self._record_compliance(
                session,
                pref,
                ComplianceAction.CONSENT_REVOKED,
                details={"previous_consent_granted_at": _isoformat(previous_consent)},
                **audit,
            )

        self.logger.info(
            "Preference saved",
            extra={
                "tenant_id": tenant_id,
                "recipient_id": recipient_id,
                "scope_type": pref.scope_type,
                "scope": pref.scope,
                "channel": pref.channel,
                "opted_in": pref.opted_in,
                "operation": "preference.upsert",
            },
        )
        return pref

    async def delete_preference(
        self,
        session: AsyncSession,
        tenant_id: str,
        preference_id: UUID,
        *,
        source: str = "api",
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> None:
        pref = await self._preference_repo.get(session, preference_id)
        if pref is None or pref.tenant_id != tenant_id:
            raise NotFoundException(
                detail=f"Preference {preference_id} not found",
                type="preference-not-found",
                extra={"preference_id": str(preference_id)},
            )
        await self._record_compliance(
            session,
            pref,
            ComplianceAction.PREFERENCE_DELETED,
            details={
                "opted_in": pref.opted_in,
                "consent_granted_at": _isoformat(pref.consent_granted_at),
            },
            source=source,
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )
        await self._preference_repo.delete(session, pref)

    async def list_compliance_events(
        self,
        session: AsyncSession,
        tenant_id: str,
        *,
        recipient_type: str | None = None,
        recipient_id: str | None = None,
        action: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[ComplianceEvent]:
        stmt = self._compliance_repo.list_statement(
            tenant_id,
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            action=action,
            since=since,
            until=until,
        )
        return await self._compliance_repo.search(session, stmt, limit=limit, offset=offset)

    async def _record_compliance(
        self,
        session: AsyncSession,
        pref: RecipientPreference,
        action: ComplianceAction,
        *,
        details: dict[str, Any],
        source: str,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime | None,
    ) -> ComplianceEvent:
        event = ComplianceEvent(
            tenant_id=pref.tenant_id,
            recipient_type=pref.recipient_type,
            recipient_id=pref.recipient_id,
            preference_id=pref.id,
            action=action.value,
            scope_type=pref.scope_type,
            scope=pref.scope,
            channel=pref.channel,
            source=source,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
            recorded_at=now or datetime.now(UTC),
        )
        await self._compliance_repo.create(session, event)
        self.logger.info(
            "Compliance event recorded",
            extra={
                "tenant_id": pref.tenant_id,
                "recipient_id": pref.recipient_id,
                "action": action.value,
                "channel": pref.channel,
                "source": source,
                "operation": "preference.compliance",
            },
        )
        return event

    # ------------------------------------------------------------------
    # Tenant configuration
    # ------------------------------------------------------------------

    async def get_tenant_config(
        self, session: AsyncSession, tenant_id: str
    ) -> TenantNotificationConfig | None:
        return await self._config_repo.get_for_tenant(session, tenant_id)

    async def get_policy(self, session: AsyncSession, tenant_id: str) -> TenantPolicy:
        """Effective policy (settings defaults merged with the tenant record)."""
        return build_policy(tenant_id, await self.get_tenant_config(session, tenant_id))

    async def update_tenant_config(
        self, session: AsyncSession, tenant_id: str, data: TenantConfigUpdate
    ) -> TenantNotificationConfig:
        fields = data.model_dump(mode="json", exclude_unset=True)
        if "retry" in fields and fields["retry"] is not None:
            fields["retry"] = {k: v for k, v in fields["retry"].items() if v is not None}
        if "disabled_channels" in fields and fields["disabled_channels"] is None:
            fields["disabled_channels"] = []

        config = await self._config_repo.upsert(session, tenant_id, **fields)
        self.logger.info(
            "Tenant notification config updated",
            extra={
                "tenant_id": tenant_id,
                "fields": sorted(fields),
                "operation": "tenant_config.update",
            },
        )
        return config


_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create the singleton NotificationService instance."""
    global _service
    if _service is None:
        _service = NotificationService()
    return _service


def set_notification_service(service: NotificationService | None) -> None:
    global _service
    _service = service


__all__ = [
    "NotificationService",
    "SubmitOutcome",
    "get_notification_service",
    "set_notification_service",
]
