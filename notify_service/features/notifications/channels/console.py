"""Development sender that logs instead of delivering."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notify_service.core.database import generate_uuid7
from notify_service.features.notifications.channels.base import Delivered, SendResult

if TYPE_CHECKING:
    from notify_service.features.notifications.content import RenderedContent

logger = logging.getLogger(__name__)


def _mask(address: str) -> str:
    if len(address) <= 4:
        return "*" * len(address)
    return address[:2] + "*" * (len(address) - 4) + address[-2:]


class ConsoleSender:
    """Always delivers; writes a summary line to the log."""

    name = "console"

    async def send(self, channel: str, address: str, content: RenderedContent) -> SendResult:
        message_id = f"console-{generate_uuid7()}"
        logger.info(
            f"[{channel}] {content.kind} message to {_mask(address)}",
            extra={
                "channel": channel,
                "content_kind": content.kind,
                "provider_message_id": message_id,
                "operation": "channel.console.send",
            },
        )
        return Delivered(provider=self.name, provider_message_id=message_id)


__all__ = ["ConsoleSender"]
