"""Channel sender contract.

A sender delivers already-rendered content to one address and reports one
of three outcomes. Provider wire details stay inside the sender.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from notify_service.features.notifications.content import RenderedContent


@dataclass(frozen=True, slots=True)
class Delivered:
    """Provider accepted the message.

    Attributes:
        provider: Sender/provider name recorded on the delivery event
        provider_message_id: Provider's id, used for downstream dedup
        metadata: Extra provider response details
    """

    provider: str | None = None
    provider_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TransientFailure:
    """Might succeed later (timeout, 5xx, upstream throttling)."""

    reason: str
    provider: str | None = None
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class PermanentFailure:
    """Will never succeed (invalid address, unsubscribed upstream)."""

    reason: str
    provider: str | None = None
    status_code: int | None = None


SendResult = Delivered | TransientFailure | PermanentFailure


@runtime_checkable
class ChannelSender(Protocol):
    """Protocol implemented by every provider integration."""

    name: str

    async def send(self, channel: str, address: str, content: RenderedContent) -> SendResult:
        """Deliver ``content`` to ``address`` over ``channel``."""
        ...


__all__ = [
    "ChannelSender",
    "Delivered",
    "PermanentFailure",
    "SendResult",
    "TransientFailure",
]
