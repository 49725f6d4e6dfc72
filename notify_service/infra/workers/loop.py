"""Background polling loops.

A loop repeatedly calls ``run_once()``; when a pass did no work it sleeps
for the poll interval, otherwise it yields and goes straight on. Errors in
a pass are logged and followed by a longer back-off so a broken database
does not turn into a hot loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket

logger = logging.getLogger(__name__)


def default_worker_prefix() -> str:
    """``host:pid``; worker ids append an index or a role."""
    return f"{socket.gethostname()}:{os.getpid()}"


class PollingLoop:
    """Base class for background processors that poll the database.

    Subclasses implement :meth:`run_once` and return how much work they did.

    Attributes:
        name: Used in logs and as the task name
        poll_interval: Seconds to sleep after an idle pass
        tasks: Number of concurrent copies of the loop
    """

    name = "loop"

    def __init__(self, *, poll_interval: float, tasks: int = 1) -> None:
        self.poll_interval = poll_interval
        self.tasks = tasks
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self, index: int = 0) -> int:
        """Do one pass of work. Returns the number of items handled."""
        raise NotImplementedError

    async def start(self) -> None:
        """Start the background tasks."""
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._run_loop(index), name=f"{self.name}-{index}")
            for index in range(self.tasks)
        ]
        logger.info(
            f"{self.name} started",
            extra={"tasks": self.tasks, "poll_interval": self.poll_interval},
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop gracefully: let the current pass finish, cancel after ``timeout``."""
        if not self._running:
            return

        self._running = False
        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            if pending:
                logger.warning(
                    f"{self.name} shutdown timed out, cancelled {len(pending)} tasks"
                )
            self._tasks = []

        logger.info(f"{self.name} stopped")

    async def _run_loop(self, index: int) -> None:
        while self._running:
            try:
                handled = await self.run_once(index)
                if handled == 0:
                    await asyncio.sleep(self.poll_interval)
                else:
                    await asyncio.sleep(0)
            except asyncio.CancelledError:
                logger.info(f"{self.name} loop cancelled")
                break
            except Exception:
                logger.exception(f"Error in {self.name} loop")
                await asyncio.sleep(self.poll_interval * 2)


__all__ = ["PollingLoop", "default_worker_prefix"]
