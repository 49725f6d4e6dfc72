"""Database commands.

Example:bash
    # Verify connectivity and create missing tables
    notify-service db init

Server databases are migrated with ``alembic upgrade head``.
"""

import sys

import click

from notify_service.cli.utils import coro, error, info, success


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@coro
async def init() -> None:
    """Verify connectivity and create any missing tables."""
    from notify_service.core.settings import get_db_settings
    from notify_service.infra.database import create_all, get_engine, init_database

    url = get_db_settings().get_sqlalchemy_url()
    info(f"Connecting to: {url.split('@')[-1]}")

    try:
        await init_database()
        tables = await create_all(get_engine())
    except Exception as e:
        error(f"Failed to initialize database: {e}")
        sys.exit(1)

    success(f"Database ready ({len(tables)} tables)")
