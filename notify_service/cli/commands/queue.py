"""Dispatch queue commands: dead-letter inspection, requeue, cancel, stats."""

import sys
from uuid import UUID

import click

from notify_service.cli.utils import coro, error, header, info, status_label, success, table


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        error(f"Invalid {label} format: {value}")
        sys.exit(1)


@click.group(name="queue")
def queue() -> None:
    """Dispatch queue commands."""


@queue.command(name="dead")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@click.option("--channel", default=None, help="Only this channel")
@click.option("--limit", default=50, type=int, help="Maximum entries to display (default: 50)")
@click.option("--offset", default=0, type=int, help="Number of entries to skip")
@coro
async def dead(tenant_id: str, channel: str | None, limit: int, offset: int) -> None:
    """List dead entries awaiting manual intervention."""
    from notify_service.features.notifications.service import get_notification_service
    from notify_service.infra.database import get_async_session

    header(f"Dead entries for {tenant_id}")

    async with get_async_session() as session:
        result = await get_notification_service().list_dead(
            session, tenant_id, channel=channel, limit=limit, offset=offset
        )

    if not result.items:
        info("No dead entries")
        return

    table(
        [
            {
                "id": entry.id,
                "channel": entry.channel,
                "type": entry.type_code,
                "attempts": entry.attempt_count,
                "reason": entry.failure_reason,
                "error": (entry.last_error or "")[:60],
            }
            for entry in result.items
        ],
        ["id", "channel", "type", "attempts", "reason", "error"],
    )
    success(f"Showing {len(result.items)}/{result.total} dead entries")


@queue.command(name="requeue")
@click.argument("entry_id")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@coro
async def requeue(entry_id: str, tenant_id: str) -> None:
    """Send a dead entry back to pending.

    ENTRY_ID is the UUID of the queue entry.
    """
    from notify_service.core.exceptions import NotFoundException
    from notify_service.features.notifications.exceptions import InvalidTransition
    from notify_service.features.notifications.service import get_notification_service
    from notify_service.infra.database import get_async_session

    entry_uuid = _parse_uuid(entry_id, "entry ID")
    async with get_async_session() as session:
        try:
            entry = await get_notification_service().requeue(session, tenant_id, entry_uuid)
        except (NotFoundException, InvalidTransition) as e:
            error(str(e))
            sys.exit(1)
        await session.commit()

    success(f"Entry {entry.id} requeued ({status_label(entry.status)})")


@queue.command(name="cancel")
@click.argument("entry_id")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")
@coro
async def cancel(entry_id: str, tenant_id: str) -> None:
    """Cancel a pending entry (best effort when already in flight).

    ENTRY_ID is the UUID of the queue entry.
    """
    from notify_service.core.exceptions import NotFoundException
    from notify_service.features.notifications.exceptions import InvalidTransition
    from notify_service.features.notifications.service import get_notification_service
    from notify_service.infra.database import get_async_session

    entry_uuid = _parse_uuid(entry_id, "entry ID")
    async with get_async_session() as session:
        try:
            entry = await get_notification_service().cancel(session, tenant_id, entry_uuid)
        except (NotFoundException, InvalidTransition) as e:
            error(str(e))
            sys.exit(1)
        await session.commit()

    if entry.cancel_requested and entry.status == "in_flight":
        info(f"Entry {entry.id} is in flight; cancellation requested")
    else:
        success(f"Entry {entry.id} cancelled ({status_label(entry.status)})")


@queue.command(name="stats")
@click.option("--tenant", "tenant_id", default=None, help="Only this tenant")
@coro
async def stats(tenant_id: str | None) -> None:
    """Entry counts per status."""
    from notify_service.features.notifications.queue import get_dispatch_queue
    from notify_service.infra.database import get_async_session

    header("Queue status" + (f" for {tenant_id}" if tenant_id else ""))
    async with get_async_session() as session:
        counts = await get_dispatch_queue().counts(session, tenant_id)

    for status, count in counts.items():
        click.echo(f"  {status_label(status)}: {count}")
