"""Channel senders and their registry."""

from __future__ import annotations

from notify_service.features.notifications.channels.base import (
    ChannelSender,
    Delivered,
    PermanentFailure,
    SendResult,
    TransientFailure,
)
from notify_service.features.notifications.channels.console import ConsoleSender
from notify_service.features.notifications.channels.http import HttpGatewaySender, classify_status
from notify_service.features.notifications.channels.registry import (
    ChannelRegistry,
    build_default_registry,
    get_channel_registry,
    set_channel_registry,
)
from notify_service.features.notifications.channels.webhook import (
    WebhookChannelSender,
    resolve_webhook,
)

__all__ = [
    "ChannelRegistry",
    "ChannelSender",
    "ConsoleSender",
    "Delivered",
    "HttpGatewaySender",
    "PermanentFailure",
    "SendResult",
    "TransientFailure",
    "WebhookChannelSender",
    "build_default_registry",
    "classify_status",
    "get_channel_registry",
    "resolve_webhook",
    "set_channel_registry",
]
