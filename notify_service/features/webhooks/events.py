"""Webhook event types and payload builders.

Producers publish domain events by type; webhooks subscribe to types (or to
``"*"``). The catalogue below documents the events the platform emits. It is
informational: publishing an unknown type is allowed, it simply reaches only
wildcard subscribers and webhooks that listed it explicitly.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import uuid
from datetime import UTC, datetime
from typing import Any

WILDCARD = "*"


class OrderEvents:
    """Order lifecycle events."""

    PLACED = "order.placed"
    ACCEPTED = "order.accepted"
    PACKED = "order.packed"
    DISPATCHED = "order.dispatched"
    DELIVERED = "order.delivered"
    CANCELLED = "order.cancelled"


class CustomerEvents:
    REGISTERED = "customer.registered"
    UPDATED = "customer.updated"


class ProductEvents:
    CREATED = "product.created"
    OUT_OF_STOCK = "product.out_of_stock"


class PaymentEvents:
    RECEIVED = "payment.received"


class LoyaltyEvents:
    POINTS_EARNED = "loyalty.points_earned"


# All event types the platform publishes
ALL_EVENT_TYPES = [
    OrderEvents.PLACED,
    OrderEvents.ACCEPTED,
    OrderEvents.PACKED,
    OrderEvents.DISPATCHED,
    OrderEvents.DELIVERED,
    OrderEvents.CANCELLED,
    CustomerEvents.REGISTERED,
    CustomerEvents.UPDATED,
    ProductEvents.CREATED,
    ProductEvents.OUT_OF_STOCK,
    PaymentEvents.RECEIVED,
    LoyaltyEvents.POINTS_EARNED,
]

TEST_EVENT_TYPE = "webhook.test"


def generate_event_id(event_type: str) -> str:
    """Generate a unique event ID for tracking and idempotency.

    Examples:
        >>> generate_event_id("order.placed")  # doctest: +SKIP
        'evt_order_placed_123e4567-e89b-12d3-a456-426614174000'
    """
    sanitized_type = event_type.replace(".", "_")
    return f"evt_{sanitized_type}_{uuid.uuid4()}"


def validate_event_type(event_type: str) -> bool:
    """Whether ``event_type`` is in the published catalogue."""
    return event_type in ALL_EVENT_TYPES


def get_event_category(event_type: str) -> str | None:
    """Leading segment of a dotted event type.

    Examples:
        >>> get_event_category("order.placed")
        'order'
        >>> get_event_category("unknown") is None
        True
    """
    head, sep, _ = event_type.partition(".")
    return head if sep else None


def build_payload(
    event_type: str,
    event_id: str,
    data: dict[str, Any],
    *,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Build the standard webhook payload.

    Structure:
        {
            "event": "order.placed",
            "id": "evt_order_placed_...",
            "timestamp": "2025-01-15T10:30:00+00:00",
            "data": {...}
        }
    """
    moment = timestamp or datetime.now(UTC)
    return {
        "event": event_type,
        "id": event_id,
        "timestamp": moment.astimezone(UTC).isoformat(),
        "data": data,
    }


def canonical_body(payload: dict[str, Any]) -> str:
    """Serialize ``payload`` deterministically (sorted keys, no whitespace).

    Non-JSON values (datetimes, UUIDs, decimals) are rendered with ``str``.
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def sign(secret: str, body: str | bytes) -> str:
    """HMAC-SHA256 of the raw body, formatted as ``sha256=<hex>``."""
    raw = body.encode("utf-8") if isinstance(body, str) else body
    digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: str | bytes, header: str | None) -> bool:
    """Check a signature header against the body. Constant-time comparison.

    Receivers should call this with the raw request bytes, before parsing.
    """
    if not header:
        return False
    return hmac.compare_digest(sign(secret, body), header.strip())


__all__ = [
    "ALL_EVENT_TYPES",
    "TEST_EVENT_TYPE",
    "WILDCARD",
    "CustomerEvents",
    "LoyaltyEvents",
    "OrderEvents",
    "PaymentEvents",
    "ProductEvents",
    "build_payload",
    "canonical_body",
    "generate_event_id",
    "get_event_category",
    "sign",
    "validate_event_type",
    "verify_signature",
]
