"""API router for the webhooks feature.

- POST /webhooks - Register a webhook
- GET /webhooks - List the tenant's webhooks
- GET /webhooks/{webhook_id} - Get a webhook
- PATCH /webhooks/{webhook_id} - Update (is_active=true re-enables)
- POST /webhooks/{webhook_id}/enable - Re-enable and clear the failure streak
- DELETE /webhooks/{webhook_id} - Delete with its delivery history
- POST /webhooks/{webhook_id}/test - Send a signed test event now
- POST /webhooks/{webhook_id}/regenerate-secret - Rotate the signing secret
- GET /webhooks/{webhook_id}/deliveries - Delivery history
- POST /webhooks/deliveries/{delivery_id}/retry - Retry a failed delivery
- POST /webhooks/events - Publish a domain event to subscribed webhooks
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from notify_service.core.dependencies import DbSession, TenantId
from notify_service.features.webhooks.schemas import (
    EventPublish,
    PublishResponse,
    SecretRegenerateResponse,
    WebhookCreate,
    WebhookDeliveryList,
    WebhookDeliveryRead,
    WebhookList,
    WebhookRead,
    WebhookTestRequest,
    WebhookTestResponse,
    WebhookUpdate,
)
from notify_service.features.webhooks.service import WebhookService, get_webhook_service
from notify_service.infra.logging import get_lazy_logger

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]


@router.post(
    "",
    response_model=WebhookRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a webhook",
    description="Subscribe an HTTPS endpoint to event types. A signing secret is generated when none is supplied.",
)
async def create_webhook(
    payload: WebhookCreate,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> WebhookRead:
    webhook = await service.register(session, tenant_id, payload)
    await session.commit()
    return WebhookRead.model_validate(webhook)


@router.get("", response_model=WebhookList, summary="List webhooks")
async def list_webhooks(
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
    is_active: bool | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> WebhookList:
    result = await service.list_webhooks(
        session, tenant_id, is_active=is_active, limit=limit, offset=offset
    )
    return WebhookList(
        items=[WebhookRead.model_validate(webhook) for webhook in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )


@router.post(
    "/events",
    response_model=PublishResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish an event",
    description="Create one pending delivery per active webhook subscribed to the event type. "
    "Re-publishing the same event_id is a no-op per webhook.",
)
async def publish_event(
    payload: EventPublish,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> PublishResponse:
    result = await service.publish(session, tenant_id, payload)
    await session.commit()
    return PublishResponse(
        event_id=result.event_id,
        delivery_ids=[delivery.id for delivery in result.deliveries],
        duplicates=result.duplicates,
    )


@router.post(
    "/deliveries/{delivery_id}/retry",
    response_model=WebhookDeliveryRead,
    summary="Retry a failed delivery",
    responses={404: {"description": "Delivery not found"}, 409: {"description": "Delivery not failed"}},
)
async def retry_delivery(
    delivery_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> WebhookDeliveryRead:
    delivery = await service.retry_delivery(session, tenant_id, delivery_id)
    await session.commit()
    return WebhookDeliveryRead.model_validate(delivery)


@router.get(
    "/{webhook_id}",
    response_model=WebhookRead,
    summary="Get a webhook",
    responses={404: {"description": "Webhook not found"}},
)
async def get_webhook(
    webhook_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> WebhookRead:
    webhook = await service.get(session, tenant_id, webhook_id)
    return WebhookRead.model_validate(webhook)


@router.patch(
    "/{webhook_id}",
    response_model=WebhookRead,
    summary="Update a webhook",
    responses={404: {"description": "Webhook not found"}},
)
async def update_webhook(
    webhook_id: UUID,
    payload: WebhookUpdate,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> WebhookRead:
    webhook = await service.update(session, tenant_id, webhook_id, payload)
    await session.commit()
    return WebhookRead.model_validate(webhook)


@router.post(
    "/{webhook_id}/enable",
    response_model=WebhookRead,
    summary="Re-enable a webhook",
    description="Activate the webhook and reset its consecutive failure counter.",
)
async def enable_webhook(
    webhook_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> WebhookRead:
    webhook = await service.enable(session, tenant_id, webhook_id)
    await session.commit()
    return WebhookRead.model_validate(webhook)


@router.delete(
    "/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a webhook",
    responses={404: {"description": "Webhook not found"}},
)
async def delete_webhook(
    webhook_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> Response:
    await service.delete(session, tenant_id, webhook_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{webhook_id}/test",
    response_model=WebhookTestResponse,
    summary="Test a webhook",
    description="Send a signed `webhook.test` event immediately. Nothing is stored or retried.",
)
async def test_webhook(
    webhook_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
    payload: WebhookTestRequest | None = None,
) -> WebhookTestResponse:
    result = await service.test(
        session, tenant_id, webhook_id, payload.payload if payload else None
    )
    return WebhookTestResponse(
        success=result.success,
        status_code=result.status_code,
        response_time_ms=result.response_time_ms,
        error_message=result.error_message,
    )


@router.post(
    "/{webhook_id}/regenerate-secret",
    response_model=SecretRegenerateResponse,
    summary="Regenerate webhook secret",
)
async def regenerate_secret(
    webhook_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
) -> SecretRegenerateResponse:
    webhook = await service.regenerate_secret(session, tenant_id, webhook_id)
    await session.commit()
    return SecretRegenerateResponse(webhook_id=webhook.id, secret=webhook.secret)


@router.get(
    "/{webhook_id}/deliveries",
    response_model=WebhookDeliveryList,
    summary="List deliveries",
    responses={404: {"description": "Webhook not found"}},
)
async def list_deliveries(
    webhook_id: UUID,
    session: DbSession,
    tenant_id: TenantId,
    service: WebhookServiceDep,
    delivery_status: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> WebhookDeliveryList:
    result = await service.list_deliveries(
        session, tenant_id, webhook_id, status=delivery_status, limit=limit, offset=offset
    )
    lazy_logger.debug(
        lambda: f"router.list_deliveries({webhook_id}) -> {len(result.items)}/{result.total}"
    )
    return WebhookDeliveryList(
        items=[WebhookDeliveryRead.model_validate(d) for d in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
    )
