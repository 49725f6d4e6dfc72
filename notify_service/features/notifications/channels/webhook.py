"""``webhook`` notification channel: signed POSTs to a tenant's registered webhook.

The entry address is the id of an active webhook the tenant registered, so
the target URL has passed the internal-address guard and every request is
signed with that webhook's secret, exactly like event deliveries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from notify_service.core.exceptions import BadRequestException
from notify_service.features.notifications.channels.base import (
    Delivered,
    PermanentFailure,
    SendResult,
    TransientFailure,
)
from notify_service.features.notifications.content import dump_content
from notify_service.features.webhooks.client import WebhookClient, ensure_public_url
from notify_service.features.webhooks.events import build_payload, canonical_body
from notify_service.features.webhooks.repository import get_webhook_repository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.features.notifications.content import RenderedContent
    from notify_service.features.notifications.models import QueueEntry
    from notify_service.features.webhooks.models import Webhook

logger = logging.getLogger(__name__)


async def resolve_webhook(session: AsyncSession, tenant_id: str, address: str) -> Webhook | None:
    """Active webhook of ``tenant_id`` whose id is ``address``."""
    try:
        webhook_id = UUID(address)
    except ValueError:
        return None
    webhook = await get_webhook_repository().get_for_tenant(session, tenant_id, webhook_id)
    if webhook is None or not webhook.is_active:
        return None
    return webhook


class WebhookChannelSender:
    """Delivers rendered webhook content through :class:`WebhookClient`.

    The dispatcher calls :meth:`bind` with the entry's webhook before
    sending. An unbound sender, or one bound to another webhook, refuses
    with a permanent failure and never makes a request.

    Outcomes follow the event delivery engine: 2xx is Delivered, any other
    status or no response at all is a TransientFailure.
    """

    name = "webhook"

    def __init__(
        self,
        client: WebhookClient | None = None,
        *,
        timeout_seconds: float | None = None,
        webhook: Webhook | None = None,
        entry: QueueEntry | None = None,
    ) -> None:
        self._client = client
        self.timeout_seconds = timeout_seconds
        self.webhook = webhook
        self.entry = entry

    @property
    def client(self) -> WebhookClient:
        if self._client is None:
            self._client = WebhookClient()
        return self._client

    def bind(self, webhook: Webhook, entry: QueueEntry) -> WebhookChannelSender:
        return WebhookChannelSender(
            self._client, timeout_seconds=self.timeout_seconds, webhook=webhook, entry=entry
        )

    async def send(self, channel: str, address: str, content: RenderedContent) -> SendResult:
        webhook, entry = self.webhook, self.entry
        if webhook is None or entry is None or str(webhook.id) != address:
            return PermanentFailure(
                f"{address!r} is not an active registered webhook", provider=self.name
            )
        try:
            ensure_public_url(webhook.url)
        except BadRequestException as exc:
            logger.warning(
                "Webhook channel target refused",
                extra={
                    "webhook_id": str(webhook.id),
                    "error": exc.detail,
                    "operation": "channel.webhook.send",
                },
            )
            return PermanentFailure(exc.detail, provider=self.name)

        data = content.payload if content.kind == "webhook" else dump_content(content)
        event_id = entry.source_event_id or str(entry.id)
        body = canonical_body(build_payload(entry.type_code, event_id, data))
        result = await self.client.deliver(
            webhook,
            body=body,
            event_type=entry.type_code,
            event_id=event_id,
            delivery_id=str(entry.id),
            timeout_seconds=self.timeout_seconds,
        )

        if result.success:
            return Delivered(
                provider=self.name,
                metadata={
                    "webhook_id": str(webhook.id),
                    "status_code": result.status_code,
                    "response_time_ms": result.response_time_ms,
                },
            )
        return TransientFailure(
            result.error_message or "webhook delivery failed",
            provider=self.name,
            status_code=result.status_code,
        )


__all__ = ["WebhookChannelSender", "resolve_webhook"]
