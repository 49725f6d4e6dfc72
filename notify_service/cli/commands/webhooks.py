"""Webhook operator commands.

- List webhooks across tenants, including auto-disabled ones
- Re-enable a webhook and clear its failure streak
"""

import sys
from uuid import UUID

import click

from notify_service.cli.utils import coro, error, header, info, success


@click.group(name="webhooks")
def webhooks() -> None:
    """Webhook management commands."""


@webhooks.command(name="list")
@click.option("--tenant", "tenant_id", default=None, help="Only this tenant")
@click.option("--active/--inactive", default=None, help="Filter by active status")
@click.option("--limit", default=50, type=int, help="Maximum webhooks to display (default: 50)")
@click.option("--offset", default=0, type=int, help="Number of webhooks to skip")
@coro
async def list_webhooks(tenant_id: str | None, active: bool | None, limit: int, offset: int) -> None:
    """List registered webhooks."""
    from notify_service.features.webhooks.service import get_webhook_service
    from notify_service.infra.database import get_async_session

    header("Registered Webhooks")

    async with get_async_session() as session:
        result = await get_webhook_service().list_webhooks(
            session, tenant_id, is_active=active, limit=limit, offset=offset
        )

    if not result.items:
        info("No webhooks found")
        return

    click.echo()
    for webhook in result.items:
        status = (
            click.style("Active", fg="green")
            if webhook.is_active
            else click.style("Inactive", fg="red")
        )
        click.echo(f"  ID: {webhook.id}")
        click.echo(f"    Tenant: {webhook.tenant_id}")
        click.echo(f"    Name: {webhook.name}")
        click.echo(f"    URL: {webhook.url}")
        click.echo(f"    Status: {status}")
        click.echo(f"    Events: {', '.join(webhook.event_types)}")
        click.echo(f"    Consecutive failures: {webhook.consecutive_failures}")
        if webhook.disabled_at:
            click.echo(
                f"    Disabled: {webhook.disabled_at:%Y-%m-%d %H:%M:%S} ({webhook.disabled_reason})"
            )
        click.echo()

    success(f"Showing {len(result.items)}/{result.total} webhooks")


@webhooks.command(name="enable")
@click.argument("webhook_id")
@coro
async def enable(webhook_id: str) -> None:
    """Re-enable a webhook and reset its failure counter.

    WEBHOOK_ID is the UUID of the webhook.
    """
    from notify_service.core.exceptions import NotFoundException
    from notify_service.features.webhooks.service import get_webhook_service
    from notify_service.infra.database import get_async_session

    try:
        webhook_uuid = UUID(webhook_id)
    except ValueError:
        error(f"Invalid webhook ID format: {webhook_id}")
        sys.exit(1)

    async with get_async_session() as session:
        try:
            webhook = await get_webhook_service().enable(session, None, webhook_uuid)
        except NotFoundException as e:
            error(e.detail)
            sys.exit(1)
        await session.commit()

    success(f"Webhook {webhook.name} ({webhook.id}) enabled")
