"""CLI command modules."""

from notify_service.cli.commands import analytics, database, queue, server, webhooks, worker

__all__ = ["analytics", "database", "queue", "server", "webhooks", "worker"]
