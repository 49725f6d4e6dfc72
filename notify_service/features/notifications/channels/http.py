"""Generic JSON-over-HTTP provider gateway sender."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from notify_service.features.notifications.channels.base import (
    Delivered,
    PermanentFailure,
    SendResult,
    TransientFailure,
)
from notify_service.features.notifications.content import dump_content
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from notify_service.features.notifications.content import RenderedContent

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


def classify_status(status_code: int) -> str:
    """Map an HTTP status to 'delivered', 'transient' or 'permanent'."""
    if 200 <= status_code < 300:
        return "delivered"
    if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
        return "transient"
    return "permanent"


class HttpGatewaySender:
    """POSTs ``{"channel", "to", "content"}`` to a provider gateway.

    Outcomes:
        - 2xx: Delivered, ``message_id`` or ``id`` from the JSON response
        - 408/425/429/5xx, timeouts, network errors: TransientFailure
        - other 4xx: PermanentFailure
    """

    def __init__(
        self,
        url: str,
        *,
        name: str = "http-gateway",
        auth_token: str | None = None,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.name = name
        self.auth_token = auth_token
        self.timeout_seconds = timeout_seconds
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _body(self, channel: str, address: str, content: RenderedContent) -> dict[str, Any]:
        return {"channel": channel, "to": address, "content": dump_content(content)}

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self.url, json=body, headers=self._headers(), timeout=self.timeout_seconds
            )
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(self.url, json=body, headers=self._headers())

    async def send(self, channel: str, address: str, content: RenderedContent) -> SendResult:
        start = time.perf_counter()
        try:
            response = await self._post(self._body(channel, address, content))
        except httpx.TimeoutException:
            logger.warning(
                "Provider gateway timeout",
                extra={"channel": channel, "provider": self.name, "operation": "channel.http.send"},
            )
            return TransientFailure(f"timeout after {self.timeout_seconds}s", provider=self.name)
        except httpx.RequestError as exc:
            logger.warning(
                "Provider gateway request error",
                extra={
                    "channel": channel,
                    "provider": self.name,
                    "error": str(exc),
                    "operation": "channel.http.send",
                },
            )
            return TransientFailure(f"request error: {exc}", provider=self.name)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        outcome = classify_status(response.status_code)
        lazy_logger.debug(
            lambda: f"channel.http.send({channel}) -> {response.status_code} {outcome} in {elapsed_ms}ms"
        )

        if outcome == "delivered":
            message_id: str | None = None
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                raw_id = data.get("message_id") or data.get("id")
                message_id = str(raw_id) if raw_id is not None else None
            return Delivered(
                provider=self.name,
                provider_message_id=message_id,
                metadata={"status_code": response.status_code, "response_time_ms": elapsed_ms},
            )

        reason = f"HTTP {response.status_code}: {response.text[:200]}".strip()
        if outcome == "transient":
            return TransientFailure(reason, provider=self.name, status_code=response.status_code)
        return PermanentFailure(reason, provider=self.name, status_code=response.status_code)


__all__ = ["TRANSIENT_STATUS_CODES", "HttpGatewaySender", "classify_status"]
