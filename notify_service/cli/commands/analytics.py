"""Analytics commands."""

import sys

import click

from notify_service.cli.utils import coro, error, info, success


@click.group(name="analytics")
def analytics() -> None:
    """Delivery analytics commands."""


@analytics.command(name="fold")
@click.option("--batch-size", type=int, default=None, help="Events per pass (default: settings)")
@coro
async def fold(batch_size: int | None) -> None:
    """Fold every not-yet-folded delivery event into the buckets."""
    from notify_service.features.notifications.analytics import get_analytics_aggregator
    from notify_service.infra.database import get_async_session

    aggregator = get_analytics_aggregator()
    folded = skipped = 0
    async with get_async_session() as session:
        while True:
            result = await aggregator.fold_pending(session, batch_size=batch_size)
            await session.commit()
            folded += result.folded
            skipped += result.skipped
            if result.folded + result.skipped == 0:
                break

    success(f"Folded {folded} events ({skipped} already folded)")


@analytics.command(name="recompute")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.option("--from", "day_from", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--to", "day_to", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@coro
async def recompute(tenant_id: str, day_from, day_to) -> None:
    """Clear and rebuild a tenant's buckets for a day range (inclusive)."""
    from notify_service.features.notifications.analytics import get_analytics_aggregator
    from notify_service.infra.database import get_async_session

    start, end = day_from.date(), day_to.date()
    info(f"Recomputing {tenant_id} from {start} to {end}")

    async with get_async_session() as session:
        try:
            result = await get_analytics_aggregator().recompute(session, tenant_id, start, end)
        except ValueError as e:
            error(str(e))
            sys.exit(1)
        await session.commit()

    success(f"Refolded {result.folded} events")
