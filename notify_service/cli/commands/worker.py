"""Background worker commands.

Example:bash
    # Run the dispatch pool, webhook worker and analytics folder until SIGTERM
    notify-service worker run --concurrency 8

    # Process everything currently due, then exit
    notify-service worker run --once
"""

import asyncio
import contextlib
import signal

import click

from notify_service.cli.utils import coro, header, info, success


@click.group(name="worker")
def worker() -> None:
    """Dispatch worker commands."""


@worker.command(name="run")
@click.option("--concurrency", type=int, default=None, help="Dispatch worker tasks (default: settings)")
@click.option("--batch-size", type=int, default=None, help="Entries claimed per pass (default: settings)")
@click.option("--once", is_flag=True, help="Drain what is due now and exit")
@coro
async def run(concurrency: int | None, batch_size: int | None, once: bool) -> None:
    """Run the dispatch worker pool, webhook worker and analytics folder."""
    from notify_service.features.notifications.worker import AnalyticsFolder, DispatchWorkerPool
    from notify_service.features.webhooks.worker import WebhookWorker

    pool = DispatchWorkerPool(concurrency=concurrency, batch_size=batch_size)
    webhooks = WebhookWorker(batch_size=batch_size)
    folder = AnalyticsFolder()

    if once:
        header("Draining due work")
        dispatched = await pool.drain()
        delivered = await webhooks.drain()
        folded = await folder.fold()
        success(
            f"Dispatched {dispatched} entries, attempted {delivered} webhook deliveries, "
            f"folded {folded.folded} events"
        )
        return

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    loops = (pool, webhooks, folder)
    for background in loops:
        await background.start()
    info(f"Workers running ({pool.tasks} dispatch tasks); Ctrl+C to stop")

    try:
        await stop.wait()
    finally:
        for background in reversed(loops):
            await background.stop()
    success("Workers stopped")
