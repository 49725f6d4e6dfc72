"""Server command."""

import click

from notify_service.cli.utils import info, warning
from notify_service.core.settings import get_app_settings


@click.command(name="serve")
@click.option("--host", default=None, help="Host to bind (default: APP_HOST)")
@click.option("--port", default=None, type=int, help="Port to bind (default: APP_PORT)")
@click.option("--reload/--no-reload", default=False, help="Enable auto-reload on code changes")
@click.option("--workers", default=1, type=int, help="Number of worker processes")
def serve(host: str | None, port: int | None, reload: bool, workers: int) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_app_settings()
    host = host or settings.host
    port = port or settings.port

    if reload and workers > 1:
        warning("--reload is incompatible with --workers > 1. Setting workers to 1.")
        workers = 1

    info(f"Serving {settings.title} at http://{host}:{port} ({settings.environment})")
    uvicorn.run(
        "notify_service.app.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=workers,
        # Logging is configured by the app lifespan
        log_config=None,
    )
