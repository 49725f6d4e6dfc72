"""Background worker for webhook deliveries.

Each pass claims a batch (commit), then attempts the claimed deliveries
concurrently, one session per delivery. The engine's per-tenant
semaphore keeps one tenant's slow endpoint from occupying the whole batch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from notify_service.core.settings import get_webhook_settings
from notify_service.features.webhooks.dispatcher import (
    WebhookDeliveryEngine,
    get_webhook_engine,
)
from notify_service.features.webhooks.models import WebhookDelivery
from notify_service.infra.database import get_session_factory
from notify_service.infra.logging import get_lazy_logger, log_context
from notify_service.infra.workers import PollingLoop, default_worker_prefix

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class WebhookWorker(PollingLoop):
    """Polls ``webhook_deliveries`` and sends what is due.

    With ``parallel=False`` a batch is attempted sequentially in the claim
    session (single-connection databases such as in-memory SQLite).
    """

    name = "webhook-worker"

    def __init__(
        self,
        *,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        visibility_timeout: float | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        engine: WebhookDeliveryEngine | None = None,
        worker_prefix: str | None = None,
        parallel: bool = True,
    ) -> None:
        settings = get_webhook_settings()
        super().__init__(
            poll_interval=poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self.batch_size = batch_size or settings.batch_size
        self.visibility_timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else settings.visibility_timeout_seconds
        )
        self.parallel = parallel
        self._session_factory = session_factory
        self._engine = engine or get_webhook_engine()
        self._worker_id = f"{worker_prefix or default_worker_prefix()}/webhooks"

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @property
    def worker_id(self) -> str:
        return self._worker_id

    async def run_once(self, index: int = 0) -> int:
        async with self.session_factory() as session:
            deliveries = await self._engine.claim_batch(
                session,
                self.worker_id,
                self.batch_size,
                visibility_timeout=self.visibility_timeout,
            )
            await session.commit()

            if not self.parallel:
                for delivery in deliveries:
                    await self._attempt(session, delivery)
                return len(deliveries)

        if deliveries:
            await asyncio.gather(*(self._attempt_in_new_session(d.id) for d in deliveries))
            lazy_logger.debug(lambda: f"{self.worker_id}: attempted {len(deliveries)} deliveries")
        return len(deliveries)

    async def _attempt_in_new_session(self, delivery_id: UUID) -> None:
        async with self.session_factory() as session:
            delivery = await session.get(WebhookDelivery, delivery_id)
            if delivery is not None:
                await self._attempt(session, delivery)

    async def _attempt(self, session: AsyncSession, delivery: WebhookDelivery) -> None:
        with log_context(
            worker_id=self.worker_id, tenant_id=delivery.tenant_id, delivery_id=str(delivery.id)
        ):
            try:
                await self._engine.deliver(
                    session,
                    delivery,
                    worker_id=self.worker_id,
                    visibility_timeout=self.visibility_timeout,
                )
                await session.commit()
            except Exception:
                # Left in_flight; released after the visibility timeout
                await session.rollback()
                logger.exception(
                    "Webhook delivery attempt failed; left for visibility timeout",
                    extra={"delivery_id": str(delivery.id), "operation": "webhook_worker.deliver"},
                )

    async def drain(self, *, max_passes: int = 100) -> int:
        """Run passes until one claims nothing. Returns the total attempted."""
        total = 0
        for _ in range(max_passes):
            handled = await self.run_once()
            total += handled
            if handled == 0:
                break
        return total


__all__ = ["WebhookWorker"]
