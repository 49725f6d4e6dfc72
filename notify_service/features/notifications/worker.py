"""Dispatch worker pool and analytics folder.

Each dispatch worker loops: claim a batch (commit), dispatch the entries one
by one (commit after each), sleep when the queue had nothing due. The
dispatcher renews each claim just before its send, so a long batch never
runs an entry past its visibility timeout. Workers never wait on a
particular entry; scheduled sends and deferrals are just rows whose
``next_eligible_at`` is in the future.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notify_service.core.settings import get_dispatch_settings
from notify_service.features.notifications.analytics import (
    AnalyticsAggregator,
    get_analytics_aggregator,
)
from notify_service.features.notifications.dispatcher import (
    ChannelDispatcher,
    get_channel_dispatcher,
)
from notify_service.features.notifications.metrics import dispatch_workers_active
from notify_service.features.notifications.queue import DispatchQueue, get_dispatch_queue
from notify_service.infra.database import get_session_factory
from notify_service.infra.logging import get_lazy_logger, log_context
from notify_service.infra.workers import PollingLoop, default_worker_prefix

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notify_service.features.notifications.analytics import FoldResult
    from notify_service.features.notifications.policy import TenantPolicy

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class DispatchWorkerPool(PollingLoop):
    """N concurrent dispatch workers sharing one queue."""

    name = "dispatch-workers"

    def __init__(
        self,
        *,
        concurrency: int | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        visibility_timeout: float | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        queue: DispatchQueue | None = None,
        dispatcher: ChannelDispatcher | None = None,
        worker_prefix: str | None = None,
    ) -> None:
        settings = get_dispatch_settings()
        super().__init__(
            poll_interval=poll_interval if poll_interval is not None else settings.poll_interval_seconds,
            tasks=concurrency or settings.worker_concurrency,
        )
        self.batch_size = batch_size or settings.batch_size
        self.visibility_timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else settings.visibility_timeout_seconds
        )
        self._session_factory = session_factory
        self._queue = queue or get_dispatch_queue()
        self._dispatcher = dispatcher or get_channel_dispatcher()
        self._prefix = worker_prefix or default_worker_prefix()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def worker_id(self, index: int) -> str:
        return f"{self._prefix}/{index}"

    async def start(self) -> None:
        await super().start()
        dispatch_workers_active.set(len(self._tasks))

    async def stop(self, timeout: float = 30.0) -> None:
        await super().stop(timeout)
        dispatch_workers_active.set(0)

    async def run_once(self, index: int = 0) -> int:
        """Claim and dispatch one batch. Returns the number of entries dispatched."""
        worker_id = self.worker_id(index)
        policies: dict[str, TenantPolicy] = {}

        async with self.session_factory() as session:
            entries = await self._queue.claim_batch(
                session,
                worker_id,
                self.batch_size,
                visibility_timeout=self.visibility_timeout,
                policies=policies,
            )
            # Claims are visible to other workers only once committed
            await session.commit()

            for entry in entries:
                with log_context(
                    worker_id=worker_id, tenant_id=entry.tenant_id, entry_id=str(entry.id)
                ):
                    try:
                        await self._dispatcher.dispatch(
                            session,
                            entry,
                            worker_id=worker_id,
                            policy=policies.get(entry.tenant_id),
                            visibility_timeout=self.visibility_timeout,
                        )
                        await session.commit()
                    except Exception:
                        # The claim stays in_flight and is released after its visibility timeout
                        await session.rollback()
                        logger.exception(
                            "Dispatch failed; entry left for visibility timeout",
                            extra={
                                "entry_id": str(entry.id),
                                "operation": "worker.dispatch",
                            },
                        )

        if entries:
            lazy_logger.debug(lambda: f"{worker_id}: dispatched {len(entries)} entries")
        return len(entries)

    async def drain(self, *, max_passes: int = 100) -> int:
        """Run worker 0 until a pass claims nothing. Returns the total dispatched."""
        total = 0
        for _ in range(max_passes):
            handled = await self.run_once(0)
            total += handled
            if handled == 0:
                break
        return total


class AnalyticsFolder(PollingLoop):
    """Periodically folds new delivery events into analytics buckets."""

    name = "analytics-folder"

    def __init__(
        self,
        *,
        interval: float | None = None,
        batch_size: int | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        aggregator: AnalyticsAggregator | None = None,
    ) -> None:
        settings = get_dispatch_settings()
        super().__init__(
            poll_interval=interval if interval is not None else settings.analytics_interval_seconds
        )
        self.batch_size = batch_size or settings.analytics_fold_batch_size
        self._session_factory = session_factory
        self._aggregator = aggregator or get_analytics_aggregator()

    async def fold(self) -> FoldResult:
        session_factory = self._session_factory or get_session_factory()
        async with session_factory() as session:
            result = await self._aggregator.fold_pending(session, batch_size=self.batch_size)
            await session.commit()
        return result

    async def run_once(self, index: int = 0) -> int:
        result = await self.fold()
        # A full batch means more may be waiting
        return result.folded if result.folded >= self.batch_size else 0


__all__ = ["AnalyticsFolder", "DispatchWorkerPool"]
