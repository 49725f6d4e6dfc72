"""Read paths for webhooks and their delivery records.

Claims and status changes on deliveries are compare-and-set UPDATEs issued
by ``WebhookDeliveryEngine``; nothing here changes delivery status.
"""

from __future__ import annotations

from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import Select, delete, select

from notify_service.core.database.repository import BaseRepository, SearchResult
from notify_service.features.webhooks.models import Webhook, WebhookDelivery

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class WebhookRepository(BaseRepository[Webhook]):
    """Webhook lookups; callers outside the engine always pass a tenant."""

    def __init__(self) -> None:
        super().__init__(Webhook)

    async def get_for_tenant(self, session: AsyncSession, tenant_id: str, webhook_id: UUID) -> Webhook | None:
        """None both for unknown ids and for another tenant's webhook."""
        webhook = await self.get(session, webhook_id)
        return webhook if webhook is not None and webhook.tenant_id == tenant_id else None

    async def find_subscribed(self, session: AsyncSession, tenant_id: str, event_type: str) -> Sequence[Webhook]:
        """Active webhooks of ``tenant_id`` whose subscription covers ``event_type``.

        Matching runs in Python since ``event_types`` is an array column on
        PostgreSQL and JSON text on SQLite.
        """
        stmt = (
            select(Webhook)
            .where(Webhook.tenant_id == tenant_id, Webhook.is_active.is_(True))
            .order_by(Webhook.created_at)
        )
        active = (await session.execute(stmt)).scalars().all()
        matched = [webhook for webhook in active if webhook.subscribes_to(event_type)]
        self._lazy.debug(lambda: f"webhooks for {tenant_id}/{event_type}: {len(matched)} of {len(active)} active")
        return matched

    async def search_webhooks(
        self,
        session: AsyncSession,
        *,
        tenant_id: str | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[Webhook]:
        """Newest first. ``tenant_id=None`` lists every tenant (operator CLI)."""
        stmt = select(Webhook).order_by(Webhook.created_at.desc())
        if tenant_id is not None:
            stmt = stmt.where(Webhook.tenant_id == tenant_id)
        if is_active is not None:
            stmt = stmt.where(Webhook.is_active.is_(is_active))
        return await self.search(session, stmt, limit=limit, offset=offset)


class WebhookDeliveryRepository(BaseRepository[WebhookDelivery]):
    def __init__(self) -> None:
        super().__init__(WebhookDelivery)

    async def get_for_tenant(
        self, session: AsyncSession, tenant_id: str, delivery_id: UUID
    ) -> WebhookDelivery | None:
        delivery = await self.get(session, delivery_id)
        return delivery if delivery is not None and delivery.tenant_id == tenant_id else None

    def list_statement(self, webhook_id: UUID, *, status: str | None = None) -> Select[tuple[WebhookDelivery]]:
        stmt = select(WebhookDelivery).where(WebhookDelivery.webhook_id == webhook_id)
        if status is not None:
            stmt = stmt.where(WebhookDelivery.status == status)
        return stmt.order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())

    async def find_by_webhook(
        self,
        session: AsyncSession,
        webhook_id: UUID,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> SearchResult[WebhookDelivery]:
        return await self.search(session, self.list_statement(webhook_id, status=status), limit=limit, offset=offset)

    async def delete_for_webhook(self, session: AsyncSession, webhook_id: UUID) -> int:
        """Drop a webhook's delivery history before the webhook row itself.

        SQLite does not enforce the foreign key cascade unless asked to.
        """
        result = await session.execute(delete(WebhookDelivery).where(WebhookDelivery.webhook_id == webhook_id))
        return result.rowcount or 0


@cache
def get_webhook_repository() -> WebhookRepository:
    return WebhookRepository()


@cache
def get_webhook_delivery_repository() -> WebhookDeliveryRepository:
    return WebhookDeliveryRepository()


__all__ = [
    "WebhookDeliveryRepository",
    "WebhookRepository",
    "get_webhook_delivery_repository",
    "get_webhook_repository",
]
