"""Channel to sender mapping."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notify_service.core.settings import get_dispatch_settings
from notify_service.features.notifications.channels.console import ConsoleSender
from notify_service.features.notifications.channels.http import HttpGatewaySender
from notify_service.features.notifications.channels.webhook import WebhookChannelSender
from notify_service.features.notifications.enums import Channel

if TYPE_CHECKING:
    from notify_service.core.settings import DispatchSettings
    from notify_service.features.notifications.channels.base import ChannelSender

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Resolves the sender for a channel; ``None`` means the channel has no provider."""

    def __init__(self, senders: dict[str, ChannelSender] | None = None) -> None:
        self._senders: dict[str, ChannelSender] = dict(senders or {})

    def register(self, channel: str | Channel, sender: ChannelSender) -> None:
        key = channel.value if isinstance(channel, Channel) else channel
        self._senders[key] = sender
        logger.info(
            "Channel sender registered",
            extra={"channel": key, "provider": sender.name, "operation": "channel.register"},
        )

    def unregister(self, channel: str | Channel) -> None:
        key = channel.value if isinstance(channel, Channel) else channel
        self._senders.pop(key, None)

    def get(self, channel: str) -> ChannelSender | None:
        return self._senders.get(channel)

    @property
    def channels(self) -> list[str]:
        return sorted(self._senders)


def build_default_registry(settings: DispatchSettings | None = None) -> ChannelRegistry:
    """Console sender per channel unless a gateway URL is configured.

    The ``webhook`` channel always posts signed requests to the tenant's
    registered webhook; gateway URLs do not apply to it.
    """
    settings = settings or get_dispatch_settings()
    token = settings.gateway_auth_token.get_secret_value() if settings.gateway_auth_token else None
    registry = ChannelRegistry()
    console = ConsoleSender()

    for channel in Channel:
        url = settings.gateway_urls.get(channel.value)
        if channel is Channel.WEBHOOK:
            registry.register(
                channel, WebhookChannelSender(timeout_seconds=settings.send_timeout_seconds)
            )
        elif url:
            registry.register(
                channel,
                HttpGatewaySender(
                    url,
                    name=f"{channel.value}-gateway",
                    auth_token=token,
                    timeout_seconds=settings.send_timeout_seconds,
                ),
            )
        else:
            registry.register(channel, console)
    return registry


_registry: ChannelRegistry | None = None


def get_channel_registry() -> ChannelRegistry:
    """Get or create the singleton ChannelRegistry."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


def set_channel_registry(registry: ChannelRegistry | None) -> None:
    """Replace the singleton (tests, embedding applications)."""
    global _registry
    _registry = registry


__all__ = [
    "ChannelRegistry",
    "build_default_registry",
    "get_channel_registry",
    "set_channel_registry",
]
