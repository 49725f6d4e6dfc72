"""API router for the notifications feature.

Ingestion:
- POST /notifications - Submit one notification
- POST /notifications/events - Ingest a producer event (fan out per channel)

Queue:
- GET /notifications/entries - List queue entries
- GET /notifications/entries/{entry_id} - Get one entry
- GET /notifications/entries/{entry_id}/events - Entry history
- POST /notifications/entries/{entry_id}/cancel - Cancel
- POST /notifications/entries/{entry_id}/requeue - Requeue a dead entry
- POST /notifications/entries/{entry_id}/engagement - Record open/click
- GET /notifications/dead - Dead-letter list
- GET /notifications/stats - Entry counts per status

Templates, preferences, tenant configuration and analytics have their own
sections below. Every endpoint is scoped to the tenant in the tenant header.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from notify_service.core.dependencies import DbSession, TenantId
from notify_service.core.exceptions import BadRequestException, NotFoundException
from notify_service.features.notifications.dependencies import (
    AnalyticsAggregatorDep,
    NotificationServiceDep,
    TemplateServiceDep,
)
from notify_service.features.notifications.enums import Channel, ComplianceAction, EntryStatus
from notify_service.features.notifications.models import NotificationTemplate
from notify_service.features.notifications.schemas import (
    AnalyticsSummary,
    BucketRead,
    ComplianceEventList,
    ComplianceEventRead,
    DeliveryEventList,
    DeliveryEventRead,
    EngagementCreate,
    FoldResponse,
    IngestResponse,
    NotificationSubmit,
    PreferenceRead,
    PreferenceUpsert,
    ProducerEvent,
    QueueEntryList,
    QueueEntryRead,
    SubmitResponse,
    TemplateList,
    TemplatePreviewRequest,
    TemplatePreviewResponse,
    TemplateRead,
    TemplateUpsert,
    TenantConfigRead,
    TenantConfigUpdate,
)
from notify_service.features.notifications.service import SubmitOutcome
from notify_service.features.notifications.templates import TemplateService
from notify_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _submit_response(outcome: SubmitOutcome) -> SubmitResponse:
    entry = outcome.entry
    return SubmitResponse(
        entry_id=entry.id,
        status=entry.status,
        deduplicated=outcome.deduplicated,
        next_eligible_at=entry.next_eligible_at if entry.status == EntryStatus.PENDING.value else None,
        failure_reason=entry.failure_reason,
    )


def _client_info(request: Request) -> dict[str, str | None]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ============================================================================
# Ingestion
# ============================================================================


@router.post(
    "",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a notification",
    description="""
Validate, render and queue one notification for one recipient and channel.

Rejected with 422 (nothing queued) when `scheduled_for` is not in the future,
the channel is disabled for the tenant, or no template resolves for the
type code and channel. Delivery happens asynchronously; follow it through
the entry's events.
""",
)
async def submit_notification(
    payload: NotificationSubmit,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> SubmitResponse:
    outcome = await service.submit(session, tenant_id, payload)
    await session.commit()
    return _submit_response(outcome)


@router.post(
    "/events",
    response_model=IngestResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a producer event",
)
async def ingest_event(
    payload: ProducerEvent,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> IngestResponse:
    """Fan a domain event out to one entry per addressed channel."""
    if payload.tenant_id != tenant_id:
        raise BadRequestException(
            detail="Event tenant does not match the calling tenant",
            type="tenant-mismatch",
            extra={"event_tenant_id": payload.tenant_id},
        )
    outcomes = await service.ingest_event(session, payload)
    await session.commit()
    return IngestResponse(
        event_id=payload.event_id, entries=[_submit_response(o) for o in outcomes]
    )


# ============================================================================
# Queue
# ============================================================================


@router.get("/entries", response_model=QueueEntryList, summary="List queue entries")
async def list_entries(
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
    entry_status: Annotated[EntryStatus | None, Query(alias="status")] = None,
    channel: Channel | None = None,
    recipient_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> QueueEntryList:
    result = await service.list_entries(
        session,
        tenant_id,
        status=entry_status.value if entry_status else None,
        channel=channel.value if channel else None,
        recipient_id=recipient_id,
        limit=limit,
        offset=offset,
    )
    return QueueEntryList(
        items=[QueueEntryRead.model_validate(e) for e in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


@router.get("/dead", response_model=QueueEntryList, summary="List dead entries")
async def list_dead(
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
    channel: Channel | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> QueueEntryList:
    result = await service.list_dead(
        session, tenant_id, channel=channel.value if channel else None, limit=limit, offset=offset
    )
    return QueueEntryList(
        items=[QueueEntryRead.model_validate(e) for e in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


@router.get("/stats", summary="Entry counts per status")
async def queue_stats(
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> dict[str, int]:
    return await service.queue.counts(session, tenant_id)


@router.get(
    "/entries/{entry_id}",
    response_model=QueueEntryRead,
    responses={404: {"description": "Entry not found"}},
)
async def get_entry(
    entry_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> QueueEntryRead:
    entry = await service.get_entry(session, tenant_id, entry_id)
    return QueueEntryRead.model_validate(entry)


@router.get(
    "/entries/{entry_id}/events",
    response_model=list[DeliveryEventRead],
    summary="Entry history, oldest first",
)
async def entry_history(
    entry_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> list[DeliveryEventRead]:
    events = await service.entry_history(session, tenant_id, entry_id)
    return [DeliveryEventRead.model_validate(e) for e in events]


@router.post(
    "/entries/{entry_id}/cancel",
    response_model=QueueEntryRead,
    summary="Cancel an entry",
    description="Pending entries fail with reason `cancelled`; in-flight cancellation is best effort.",
    responses={404: {"description": "Entry not found"}, 409: {"description": "Entry is terminal"}},
)
async def cancel_entry(
    entry_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> QueueEntryRead:
    entry = await service.cancel(session, tenant_id, entry_id)
    await session.commit()
    return QueueEntryRead.model_validate(entry)


@router.post(
    "/entries/{entry_id}/requeue",
    response_model=QueueEntryRead,
    summary="Requeue a dead entry",
    responses={404: {"description": "Entry not found"}, 409: {"description": "Entry is not dead"}},
)
async def requeue_entry(
    entry_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> QueueEntryRead:
    entry = await service.requeue(session, tenant_id, entry_id)
    await session.commit()
    return QueueEntryRead.model_validate(entry)


@router.post(
    "/entries/{entry_id}/engagement",
    response_model=DeliveryEventRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record an open or click",
)
async def record_engagement(
    entry_id: UUID,
    payload: EngagementCreate,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> DeliveryEventRead:
    event = await service.record_engagement(
        session, tenant_id, entry_id, payload.kind, url=payload.url
    )
    await session.commit()
    return DeliveryEventRead.model_validate(event)


@router.get("/events", response_model=DeliveryEventList, summary="Delivery event log")
async def list_events(
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
    entry_id: UUID | None = None,
    event_type: str | None = None,
    channel: Channel | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeliveryEventList:
    result = await service.list_events(
        session,
        tenant_id,
        entry_id=entry_id,
        event_type=event_type,
        channel=channel.value if channel else None,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return DeliveryEventList(
        items=[DeliveryEventRead.model_validate(e) for e in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


# ============================================================================
# Templates
# ============================================================================


@router.get("/templates", response_model=TemplateList, summary="List templates")
async def list_templates(
    session: DbSession,
    tenant_id: TenantId,
    templates: TemplateServiceDep,
    type_code: str | None = None,
    channel: Channel | None = None,
    include_global: bool = True,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> TemplateList:
    result = await templates.list_templates(
        session,
        tenant_id,
        include_global=include_global,
        type_code=type_code,
        channel=channel.value if channel else None,
        limit=limit,
        offset=offset,
    )
    return TemplateList(
        items=[TemplateRead.model_validate(t) for t in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


@router.put(
    "/templates",
    response_model=TemplateRead,
    summary="Create or replace a template",
    description="Replaces the tenant's template for (type_code, channel, language) and bumps its version.",
)
async def upsert_template(
    payload: TemplateUpsert,
    session: DbSession,
    tenant_id: TenantId,
    templates: TemplateServiceDep,
) -> TemplateRead:
    template = await templates.upsert(session, tenant_id, payload)
    await session.commit()
    return TemplateRead.model_validate(template)


@router.post(
    "/templates/preview",
    response_model=TemplatePreviewResponse,
    summary="Render a template without queuing",
)
async def preview_template(
    payload: TemplatePreviewRequest,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
    templates: TemplateServiceDep,
) -> TemplatePreviewResponse:
    policy = await service.get_policy(session, tenant_id)
    template, rendered = await templates.preview(
        session,
        tenant_id,
        payload.type_code,
        payload.channel.value,
        payload.variables,
        language=payload.language or policy.default_language,
        default_language=policy.default_language,
    )
    return TemplatePreviewResponse(
        template_id=template.id,
        tenant_id=template.tenant_id,
        language=template.language,
        content=rendered.content,
        missing_placeholders=list(rendered.missing),
    )


@router.get("/templates/{template_id}", response_model=TemplateRead)
async def get_template(
    template_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    templates: TemplateServiceDep,
) -> TemplateRead:
    template = await templates.get(session, tenant_id, template_id)
    if template is None:
        raise NotFoundException(
            detail=f"Template {template_id} not found",
            type="template-not-found",
            extra={"template_id": str(template_id)},
        )
    return TemplateRead.model_validate(template)


async def _own_template(
    templates: TemplateService, session: AsyncSession, tenant_id: str, template_id: UUID
) -> NotificationTemplate:
    """Template owned by the tenant; global templates are read-only here."""
    template = await templates.get(session, tenant_id, template_id)
    if template is None or template.tenant_id != tenant_id:
        raise NotFoundException(
            detail=f"Template {template_id} not found",
            type="template-not-found",
            extra={"template_id": str(template_id)},
        )
    return template


@router.post("/templates/{template_id}/activate", response_model=TemplateRead)
async def activate_template(
    template_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    templates: TemplateServiceDep,
) -> TemplateRead:
    template = await _own_template(templates, session, tenant_id, template_id)
    template = await templates.set_active(session, template, active=True)
    await session.commit()
    return TemplateRead.model_validate(template)


@router.post("/templates/{template_id}/deactivate", response_model=TemplateRead)
async def deactivate_template(
    template_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    templates: TemplateServiceDep,
) -> TemplateRead:
    template = await _own_template(templates, session, tenant_id, template_id)
    template = await templates.set_active(session, template, active=False)
    await session.commit()
    return TemplateRead.model_validate(template)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    templates: TemplateServiceDep,
) -> Response:
    template = await _own_template(templates, session, tenant_id, template_id)
    await templates.delete(session, template)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Preferences
# ============================================================================


@router.get(
    "/recipients/{recipient_type}/{recipient_id}/preferences",
    response_model=list[PreferenceRead],
    summary="List a recipient's preferences",
)
async def list_preferences(
    recipient_type: str,
    recipient_id: str,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> list[PreferenceRead]:
    prefs = await service.list_preferences(session, tenant_id, recipient_type, recipient_id)
    return [PreferenceRead.model_validate(p) for p in prefs]


@router.put(
    "/recipients/{recipient_type}/{recipient_id}/preferences",
    response_model=PreferenceRead,
    summary="Create or update one preference row",
)
async def upsert_preference(
    recipient_type: str,
    recipient_id: str,
    payload: PreferenceUpsert,
    request: Request,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> PreferenceRead:
    pref = await service.upsert_preference(
        session,
        tenant_id,
        recipient_type,
        recipient_id,
        payload,
        **_client_info(request),
    )
    await session.commit()
    return PreferenceRead.model_validate(pref)


@router.delete("/preferences/{preference_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_preference(
    preference_id: UUID,
    request: Request,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> Response:
    await service.delete_preference(session, tenant_id, preference_id, **_client_info(request))
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/compliance-events",
    response_model=ComplianceEventList,
    summary="List opt-in, opt-out and consent changes",
)
async def list_compliance_events(
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
    recipient_type: str | None = None,
    recipient_id: str | None = None,
    action: ComplianceAction | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ComplianceEventList:
    result = await service.list_compliance_events(
        session,
        tenant_id,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        action=action.value if action else None,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return ComplianceEventList(
        items=[ComplianceEventRead.model_validate(e) for e in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


# ============================================================================
# Tenant configuration
# ============================================================================


@router.get("/config", response_model=TenantConfigRead, summary="Tenant notification config")
async def get_config(
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> TenantConfigRead:
    config = await service.get_tenant_config(session, tenant_id)
    if config is None:
        return TenantConfigRead(
            tenant_id=tenant_id,
            channel_rate_limits=None,
            retry=None,
            quiet_hours=None,
            webhook_timeout_seconds=None,
            webhook_retry_attempts=None,
            default_language=None,
            disabled_channels=[],
        )
    return TenantConfigRead.model_validate(config)


@router.put("/config", response_model=TenantConfigRead, summary="Update tenant notification config")
async def update_config(
    payload: TenantConfigUpdate,
    session: DbSession,
    tenant_id: TenantId,
    service: NotificationServiceDep,
) -> TenantConfigRead:
    config = await service.update_tenant_config(session, tenant_id, payload)
    await session.commit()
    return TenantConfigRead.model_validate(config)


# ============================================================================
# Analytics
# ============================================================================


def _day_range(day_from: date | None, day_to: date | None) -> tuple[date, date]:
    today = datetime.now(UTC).date()
    day_to = day_to or today
    day_from = day_from or day_to - timedelta(days=6)
    if day_from > day_to:
        raise BadRequestException(
            detail="day_from must not be after day_to",
            type="invalid-date-range",
            extra={"day_from": day_from.isoformat(), "day_to": day_to.isoformat()},
        )
    return day_from, day_to


@router.get(
    "/analytics/summary",
    response_model=AnalyticsSummary,
    summary="Delivery analytics over a day range",
    description="Defaults to the last seven days. Counts come from folded events only.",
)
async def analytics_summary(
    session: DbSession,
    tenant_id: TenantId,
    aggregator: AnalyticsAggregatorDep,
    day_from: date | None = None,
    day_to: date | None = None,
    channel: Channel | None = None,
    type_code: str | None = None,
) -> AnalyticsSummary:
    day_from, day_to = _day_range(day_from, day_to)
    summary = await aggregator.summary(
        session,
        tenant_id,
        day_from,
        day_to,
        channel=channel.value if channel else None,
        type_code=type_code,
    )
    summary["buckets"] = [BucketRead.model_validate(b) for b in summary["buckets"]]
    return AnalyticsSummary(**summary)


@router.post(
    "/analytics/recompute",
    response_model=FoldResponse,
    summary="Rebuild analytics buckets from the event log",
)
async def analytics_recompute(
    session: DbSession,
    tenant_id: TenantId,
    aggregator: AnalyticsAggregatorDep,
    day_from: date | None = None,
    day_to: date | None = None,
) -> FoldResponse:
    day_from, day_to = _day_range(day_from, day_to)
    result = await aggregator.recompute(session, tenant_id, day_from, day_to)
    await session.commit()
    return FoldResponse(folded=result.folded, skipped=result.skipped)
