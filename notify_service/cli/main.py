"""Main CLI entry point for notify-service management commands."""

import click

from notify_service.cli.commands import analytics, database, queue, server, webhooks, worker
from notify_service.infra.logging import setup_logging


@click.group()
@click.version_option(version="1.0.0", prog_name="notify-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Notify Service CLI - workers and operator commands.

    \b
    Command Groups:
      worker     Dispatch, webhook and analytics loops
      queue      Dead letters, requeue, cancel
      analytics  Fold and recompute analytics buckets
      webhooks   Inspect and re-enable webhooks
      db         Database setup
      serve      Run the HTTP API

    \b
    Quick Start:
      notify-service db init
      notify-service worker run --concurrency 4
      notify-service queue dead --tenant acme
    """
    setup_logging()
    ctx.ensure_object(dict)


cli.add_command(worker.worker)
cli.add_command(queue.queue)
cli.add_command(analytics.analytics)
cli.add_command(webhooks.webhooks)
cli.add_command(database.db)
cli.add_command(server.serve)


def main() -> None:
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
