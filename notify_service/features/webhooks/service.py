"""Service layer for webhook registration, publishing and delivery management."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from notify_service.core.exceptions import NotFoundException, ValidationException
from notify_service.core.services import BaseService
from notify_service.features.webhooks.client import ensure_public_url
from notify_service.features.webhooks.dispatcher import (
    PublishResult,
    WebhookDeliveryEngine,
    get_webhook_engine,
)
from notify_service.features.webhooks.models import Webhook, WebhookDelivery
from notify_service.features.webhooks.repository import (
    WebhookDeliveryRepository,
    WebhookRepository,
    get_webhook_delivery_repository,
    get_webhook_repository,
)

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.database import SearchResult
    from notify_service.features.webhooks.client import WebhookDeliveryResult
    from notify_service.features.webhooks.schemas import (
        EventPublish,
        WebhookCreate,
        WebhookUpdate,
    )


class WebhookService(BaseService):
    """Orchestrates webhook operations using repositories and the delivery engine.

    All methods take the caller's session and tenant; nothing here commits.
    """

    def __init__(
        self,
        engine: WebhookDeliveryEngine | None = None,
        webhook_repository: WebhookRepository | None = None,
        delivery_repository: WebhookDeliveryRepository | None = None,
    ) -> None:
        super().__init__()
        self._engine = engine or get_webhook_engine()
        self._webhook_repo = webhook_repository or get_webhook_repository()
        self._delivery_repo = delivery_repository or get_webhook_delivery_repository()

    @property
    def engine(self) -> WebhookDeliveryEngine:
        return self._engine

    def validate_url(self, url: str) -> None:
        """Raises BadRequestException for internal or host-less URLs."""
        ensure_public_url(url)

    def generate_secret(self) -> str:
        """URL-safe random HMAC secret."""
        return secrets.token_urlsafe(32)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self, session: AsyncSession, tenant_id: str, payload: WebhookCreate
    ) -> Webhook:
        """Create and persist a new webhook for ``tenant_id``."""
        self.validate_url(str(payload.url))

        webhook = Webhook(
            tenant_id=tenant_id,
            name=payload.name,
            description=payload.description,
            url=str(payload.url),
            secret=payload.secret or self.generate_secret(),
            event_types=payload.event_types,
            is_active=payload.is_active,
            max_retries=payload.max_retries,
            timeout_seconds=payload.timeout_seconds,
            custom_headers=payload.custom_headers,
            consecutive_failures=0,
        )
        created = await self._webhook_repo.create(session, webhook)

        self.logger.info(
            "Webhook created",
            extra={
                "tenant_id": tenant_id,
                "webhook_id": str(created.id),
                "webhook_name": payload.name,
                "event_types": payload.event_types,
                "operation": "service.create_webhook",
            },
        )
        return created

    async def get(self, session: AsyncSession, tenant_id: str, webhook_id: UUID) -> Webhook:
        webhook = await self._webhook_repo.get_for_tenant(session, tenant_id, webhook_id)
        if webhook is None:
            raise NotFoundException(
                detail=f"Webhook {webhook_id} not found",
                type="webhook-not-found",
                extra={"webhook_id": str(webhook_id)},
            )
        return webhook

    async def list_webhooks(
        self,
        session: AsyncSession,
        tenant_id: str | None,
        *,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[Webhook]:
        """List webhooks. ``tenant_id=None`` lists every tenant (operator tooling)."""
        result = await self._webhook_repo.search_webhooks(
            session, tenant_id=tenant_id, is_active=is_active, limit=limit, offset=offset
        )
        self._lazy.debug(
            lambda: f"service.list_webhooks(tenant={tenant_id}, is_active={is_active}) -> "
            f"{len(result.items)}/{result.total}"
        )
        return result

    async def update(
        self,
        session: AsyncSession,
        tenant_id: str,
        webhook_id: UUID,
        payload: WebhookUpdate,
    ) -> Webhook:
        webhook = await self.get(session, tenant_id, webhook_id)
        changes = payload.model_dump(exclude_unset=True)

        if "url" in changes and payload.url is not None:
            self.validate_url(str(payload.url))
            changes["url"] = str(payload.url)
        reactivate = changes.pop("is_active", None)

        for name, value in changes.items():
            if name in {"name", "url", "event_types"} and value is None:
                continue
            setattr(webhook, name, value)

        if reactivate is True:
            self._reset(webhook)
        elif reactivate is False:
            webhook.is_active = False

        await session.flush()
        await session.refresh(webhook)

        self.logger.info(
            "Webhook updated",
            extra={
                "tenant_id": tenant_id,
                "webhook_id": str(webhook_id),
                "fields": sorted(payload.model_fields_set),
                "operation": "service.update_webhook",
            },
        )
        return webhook

    async def enable(
        self, session: AsyncSession, tenant_id: str | None, webhook_id: UUID
    ) -> Webhook:
        """Re-activate a webhook and clear its failure streak.

        ``tenant_id=None`` skips the ownership check (operator tooling).
        """
        if tenant_id is None:
            webhook = await self._webhook_repo.get(session, webhook_id)
            if webhook is None:
                raise NotFoundException(
                    detail=f"Webhook {webhook_id} not found",
                    type="webhook-not-found",
                    extra={"webhook_id": str(webhook_id)},
                )
        else:
            webhook = await self.get(session, tenant_id, webhook_id)

        self._reset(webhook)
        await session.flush()
        await session.refresh(webhook)

        self.logger.info(
            "Webhook enabled",
            extra={
                "tenant_id": webhook.tenant_id,
                "webhook_id": str(webhook_id),
                "operation": "service.enable_webhook",
            },
        )
        return webhook

    @staticmethod
    def _reset(webhook: Webhook) -> None:
        webhook.is_active = True
        webhook.consecutive_failures = 0
        webhook.disabled_at = None
        webhook.disabled_reason = None

    async def delete(self, session: AsyncSession, tenant_id: str, webhook_id: UUID) -> None:
        webhook = await self.get(session, tenant_id, webhook_id)
        removed = await self._delivery_repo.delete_for_webhook(session, webhook.id)
        await self._webhook_repo.delete(session, webhook)

        self.logger.info(
            "Webhook deleted",
            extra={
                "tenant_id": tenant_id,
                "webhook_id": str(webhook_id),
                "deliveries_removed": removed,
                "operation": "service.delete_webhook",
            },
        )

    async def regenerate_secret(
        self, session: AsyncSession, tenant_id: str, webhook_id: UUID
    ) -> Webhook:
        webhook = await self.get(session, tenant_id, webhook_id)
        webhook.secret = self.generate_secret()
        await session.flush()
        await session.refresh(webhook)

        self.logger.info(
            "Webhook secret regenerated",
            extra={
                "tenant_id": tenant_id,
                "webhook_id": str(webhook_id),
                "operation": "service.regenerate_secret",
            },
        )
        return webhook

    # ------------------------------------------------------------------
    # Events and deliveries
    # ------------------------------------------------------------------

    async def publish(
        self,
        session: AsyncSession,
        tenant_id: str,
        payload: EventPublish,
        *,
        now: datetime | None = None,
    ) -> PublishResult:
        """Fan an event out to the tenant's subscribed webhooks."""
        try:
            return await self._engine.publish(
                session,
                tenant_id,
                payload.event_type,
                payload.data,
                event_id=payload.event_id,
                now=now or datetime.now(UTC),
            )
        except ValueError as e:
            raise ValidationException(
                detail=str(e), type="webhook-payload-too-large", extra={"event_type": payload.event_type}
            ) from e

    async def list_deliveries(
        self,
        session: AsyncSession,
        tenant_id: str,
        webhook_id: UUID,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> SearchResult[WebhookDelivery]:
        await self.get(session, tenant_id, webhook_id)
        return await self._delivery_repo.find_by_webhook(
            session, webhook_id, status=status, limit=limit, offset=offset
        )

    async def get_delivery(
        self, session: AsyncSession, tenant_id: str, delivery_id: UUID
    ) -> WebhookDelivery:
        delivery = await self._delivery_repo.get_for_tenant(session, tenant_id, delivery_id)
        if delivery is None:
            raise NotFoundException(
                detail=f"Webhook delivery {delivery_id} not found",
                type="webhook-delivery-not-found",
                extra={"delivery_id": str(delivery_id)},
            )
        return delivery

    async def retry_delivery(
        self, session: AsyncSession, tenant_id: str, delivery_id: UUID
    ) -> WebhookDelivery:
        """Manually retry a failed delivery.

        Raises:
            InvalidTransition: If the delivery is not failed
        """
        delivery = await self.get_delivery(session, tenant_id, delivery_id)
        return await self._engine.retry(session, delivery)

    async def test(
        self,
        session: AsyncSession,
        tenant_id: str,
        webhook_id: UUID,
        data: dict | None = None,
    ) -> WebhookDeliveryResult:
        """Send a signed ``webhook.test`` event right now (not persisted)."""
        webhook = await self.get(session, tenant_id, webhook_id)
        result = await self._engine.ping(webhook, data)

        self.logger.info(
            "Webhook test delivery",
            extra={
                "tenant_id": tenant_id,
                "webhook_id": str(webhook_id),
                "success": result.success,
                "status_code": result.status_code,
                "operation": "service.test_webhook",
            },
        )
        return result


_service: WebhookService | None = None


def get_webhook_service() -> WebhookService:
    """Get or create the singleton WebhookService instance."""
    global _service
    if _service is None:
        _service = WebhookService()
    return _service


def set_webhook_service(service: WebhookService | None) -> None:
    global _service
    _service = service


__all__ = ["WebhookService", "get_webhook_service", "set_webhook_service"]
