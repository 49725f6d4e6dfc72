"""Custom exceptions for the notifications feature.

Delivery outcomes (Delivered, TransientFailure, Suppressed...) are values,
not exceptions; only conditions that abort an operation live here.
"""

from __future__ import annotations


class NotificationError(Exception):
    """Base exception for notification feature errors."""

    def __init__(self, message: str, *, tenant_id: str | None = None) -> None:
        self.message = message
        self.tenant_id = tenant_id
        super().__init__(message)


class TemplateMissing(NotificationError):
    """No active template resolves for (tenant, type code, channel, language).

    Fatal for the request: the ingestion API rejects it, the producer-event
    path parks the entry as dead.
    """

    def __init__(
        self,
        *,
        tenant_id: str | None,
        type_code: str,
        channel: str,
        language: str,
    ) -> None:
        self.type_code = type_code
        self.channel = channel
        self.language = language
        super().__init__(
            f"No template for type_code={type_code!r} channel={channel!r} "
            f"language={language!r} (tenant={tenant_id!r} or global)",
            tenant_id=tenant_id,
        )


class TemplateSyntaxInvalid(NotificationError):
    """A template source does not parse."""

    def __init__(self, message: str, *, field: str, tenant_id: str | None = None) -> None:
        self.field = field
        super().__init__(message, tenant_id=tenant_id)


class InvalidTransition(NotificationError):
    """An operation was asked to move an entry out of a state that forbids it."""

    def __init__(self, entry_id: str, status: str, operation: str) -> None:
        self.entry_id = entry_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} entry {entry_id} in status {status!r}")


class TemplateRenderWarning(UserWarning):
    """A placeholder had no value; the marker was left in the output."""


__all__ = [
    "InvalidTransition",
    "NotificationError",
    "TemplateMissing",
    "TemplateRenderWarning",
    "TemplateSyntaxInvalid",
]
