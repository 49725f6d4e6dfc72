"""Enumerations shared by the notification dispatch path.

Values are stored as plain strings/integers in the database so the schema
is identical on PostgreSQL and SQLite.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from notify_service.infra.ratelimit.windows import WindowType


class Channel(str, Enum):
    """Delivery medium."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"
    WHATSAPP = "whatsapp"
    WEBHOOK = "webhook"


class Priority(IntEnum):
    """Queue priority; higher values are claimed first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3

    @classmethod
    def parse(cls, value: str | int) -> Priority:
        if isinstance(value, str):
            return cls[value.upper()]
        return cls(value)


class EntryStatus(str, Enum):
    """QueueEntry lifecycle status."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"
    DEAD = "dead"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({EntryStatus.DELIVERED, EntryStatus.FAILED, EntryStatus.DEAD})


class FailureReason(str, Enum):
    """Why an entry left the happy path. Closed set."""

    SUPPRESSED = "suppressed"
    CONSENT_REQUIRED = "consent_required"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    TEMPLATE_MISSING = "template_missing"
    PERMANENT_FAILURE = "permanent_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"
    CHANNEL_DISABLED = "channel_disabled"


class EventType(str, Enum):
    """Kinds of DeliveryEvent rows."""

    QUEUED = "queued"
    DEFERRED = "deferred"
    RATE_LIMITED = "rate_limited"
    SUPPRESSED = "suppressed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    RELEASED = "released"
    REQUEUED = "requeued"
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    DEAD = "dead"
    OPENED = "opened"
    CLICKED = "clicked"


class EntryKind(str, Enum):
    """Which table a DeliveryEvent refers to."""

    NOTIFICATION = "notification"
    WEBHOOK = "webhook"


class TemplateCategory(str, Enum):
    SECURITY = "security"
    CRITICAL = "critical"
    TRANSACTIONAL = "transactional"
    MARKETING = "marketing"
    PROMOTIONAL = "promotional"
    SYSTEM = "system"
    COMPLIANCE = "compliance"


class ComplianceAction(str, Enum):
    """What a ComplianceEvent records about a recipient's choices."""

    OPTED_IN = "opted_in"
    OPTED_OUT = "opted_out"
    CONSENT_GRANTED = "consent_granted"
    CONSENT_REVOKED = "consent_revoked"
    PREFERENCE_DELETED = "preference_deleted"


class ScopeType(str, Enum):
    """What a RecipientPreference row applies to, most specific first."""

    TYPE = "type"
    CATEGORY = "category"
    ANY = "any"


ANY = "*"
"""Wildcard value for preference scope and channel columns."""


__all__ = [
    "ANY",
    "TERMINAL_STATUSES",
    "Channel",
    "ComplianceAction",
    "EntryKind",
    "EntryStatus",
    "EventType",
    "FailureReason",
    "Priority",
    "ScopeType",
    "TemplateCategory",
    "WindowType",
]
