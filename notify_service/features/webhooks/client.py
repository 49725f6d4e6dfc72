"""Signed HTTP POSTs to subscriber endpoints.

The client makes exactly one request per call and reports the outcome; it
never raises for HTTP or network failures. Retry scheduling, auto-disable
and the per-tenant concurrency cap belong to the delivery engine.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from notify_service.core.exceptions import BadRequestException
from notify_service.core.settings import get_webhook_settings
from notify_service.features.webhooks.events import sign
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from notify_service.core.settings import WebhookSettings
    from notify_service.features.webhooks.models import Webhook

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

# Lower-cased; subscriber custom headers with these names are dropped
RESERVED_HEADERS = frozenset(
    {
        "content-type",
        "user-agent",
        "x-webhook-signature",
        "x-webhook-timestamp",
        "x-webhook-event",
        "x-webhook-event-id",
        "x-webhook-delivery-id",
    }
)


def ensure_public_url(url: str) -> None:
    """Reject URLs without a host or whose host is an internal IP literal.

    Raises:
        BadRequestException: If the URL points to an internal address
    """
    hostname = urlparse(url).hostname
    if not hostname:
        raise BadRequestException(detail="Invalid URL: missing hostname", type="invalid-webhook-url")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        # Domain names are allowed; resolution happens at send time
        return

    if ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local:
        raise BadRequestException(
            detail=f"Webhook URL cannot point to an internal address: {hostname}",
            type="invalid-webhook-url",
            extra={"url": url},
        )


@dataclass(frozen=True, slots=True)
class WebhookDeliveryResult:
    """Outcome of one POST. ``status_code`` is None when no response arrived."""

    success: bool
    status_code: int | None
    response_body: str | None
    response_time_ms: int | None
    error_message: str | None

    @classmethod
    def no_response(cls, error_message: str, elapsed_ms: int) -> WebhookDeliveryResult:
        return cls(False, None, None, elapsed_ms, error_message)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class WebhookClient:
    """POST canonical event bodies with an HMAC-SHA256 signature header.

    ``transport`` lets tests substitute ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: WebhookSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_webhook_settings()
        self._transport = transport

    def build_headers(
        self,
        webhook: Webhook,
        *,
        body: str,
        event_type: str,
        event_id: str,
        delivery_id: str,
        timestamp: datetime | None = None,
    ) -> dict[str, str]:
        """Subscriber headers first, then platform headers, which always win."""
        headers = {
            name: str(value)
            for name, value in (webhook.custom_headers or {}).items()
            if name.lower() not in RESERVED_HEADERS
        }
        sent_at = (timestamp or datetime.now(UTC)).strftime("%Y-%m-%dT%H:%M:%SZ")
        headers["Content-Type"] = "application/json"
        headers["User-Agent"] = self.settings.user_agent
        headers[self.settings.signature_header] = sign(webhook.secret, body)
        headers["X-Webhook-Timestamp"] = sent_at
        headers["X-Webhook-Event"] = event_type
        headers["X-Webhook-Event-ID"] = event_id
        headers["X-Webhook-Delivery-ID"] = delivery_id
        return headers

    async def deliver(
        self,
        webhook: Webhook,
        *,
        body: str,
        event_type: str,
        event_id: str,
        delivery_id: str,
        timeout_seconds: float | None = None,
    ) -> WebhookDeliveryResult:
        """POST ``body`` exactly as signed. Any 2xx counts as delivered.

        The timeout falls back to the webhook's own, then to
        WEBHOOK_TIMEOUT_SECONDS; connecting may take at most
        WEBHOOK_CONNECT_TIMEOUT_SECONDS of it.
        """
        timeout = float(timeout_seconds or webhook.timeout_seconds or self.settings.timeout_seconds)
        headers = self.build_headers(
            webhook, body=body, event_type=event_type, event_id=event_id, delivery_id=delivery_id
        )
        log_extra: dict[str, Any] = {
            "webhook_id": str(webhook.id),
            "tenant_id": webhook.tenant_id,
            "event_type": event_type,
            "event_id": event_id,
            "delivery_id": delivery_id,
            "operation": "webhook.post",
        }
        lazy_logger.debug(lambda: f"webhook.post {webhook.url} event={event_type} delivery={delivery_id}")

        http_timeout = httpx.Timeout(timeout, connect=min(float(self.settings.connect_timeout_seconds), timeout))
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=http_timeout, transport=self._transport) as client:
                response = await client.post(webhook.url, content=body.encode("utf-8"), headers=headers)
        except httpx.TimeoutException:
            logger.warning("Webhook POST timed out after %ss", timeout, extra=log_extra)
            return WebhookDeliveryResult.no_response(f"Request timeout after {timeout:g}s", _elapsed_ms(started))
        except httpx.HTTPError as e:
            logger.warning("Webhook POST failed: %s", e, extra=log_extra)
            return WebhookDeliveryResult.no_response(f"Request error: {e}", _elapsed_ms(started))

        elapsed_ms = _elapsed_ms(started)
        success = response.is_success
        snippet_chars = self.settings.response_snippet_chars
        snippet = response.text[:snippet_chars] if snippet_chars and response.text else None

        logger.log(
            logging.INFO if success else logging.WARNING,
            "Webhook POST answered %s in %sms",
            response.status_code,
            elapsed_ms,
            extra={**log_extra, "status_code": response.status_code},
        )
        return WebhookDeliveryResult(
            success=success,
            status_code=response.status_code,
            response_body=snippet,
            response_time_ms=elapsed_ms,
            error_message=None if success else f"HTTP {response.status_code}",
        )


__all__ = ["RESERVED_HEADERS", "WebhookClient", "WebhookDeliveryResult", "ensure_public_url"]
