"""Webhooks feature package.

Tenants register HTTP endpoints for domain events; every publish fans out
into signed, retried deliveries (see ``dispatcher``).
"""

from .client import WebhookClient, WebhookDeliveryResult
from .dispatcher import PublishResult, WebhookDeliveryEngine, get_webhook_engine
from .events import (
    ALL_EVENT_TYPES,
    CustomerEvents,
    LoyaltyEvents,
    OrderEvents,
    PaymentEvents,
    ProductEvents,
    build_payload,
    canonical_body,
    generate_event_id,
    sign,
    verify_signature,
)
from .repository import (
    WebhookDeliveryRepository,
    WebhookRepository,
    get_webhook_delivery_repository,
    get_webhook_repository,
)
from .router import router
from .service import WebhookService, get_webhook_service
from .worker import WebhookWorker

__all__ = [
    "ALL_EVENT_TYPES",
    "CustomerEvents",
    "LoyaltyEvents",
    "OrderEvents",
    "PaymentEvents",
    "ProductEvents",
    "PublishResult",
    "WebhookClient",
    "WebhookDeliveryEngine",
    "WebhookDeliveryRepository",
    "WebhookDeliveryResult",
    "WebhookRepository",
    "WebhookService",
    "WebhookWorker",
    "build_payload",
    "canonical_body",
    "generate_event_id",
    "get_webhook_delivery_repository",
    "get_webhook_engine",
    "get_webhook_repository",
    "get_webhook_service",
    "router",
    "sign",
    "verify_signature",
]
