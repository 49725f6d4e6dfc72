"""ASGI entrypoint: ``uvicorn notify_service.app.main:app``."""

from __future__ import annotations

from fastapi import FastAPI

from notify_service.app.exception_handlers import configure_exception_handlers
from notify_service.app.lifespan import lifespan
from notify_service.app.middleware import configure_middleware
from notify_service.app.router import setup_routers
from notify_service.core.settings import get_app_settings


def create_app() -> FastAPI:
    """Build the notification API.

    Tests call this directly after overriding settings; the lifespan
    starts the dispatch and webhook worker pools when APP_RUN_WORKERS is on.
    """
    settings = get_app_settings()
    app = FastAPI(
        title=settings.title,
        description=settings.description,
        version=settings.version,
        debug=settings.debug,
        docs_url=settings.docs_url,
        openapi_url=settings.openapi_url,
        redoc_url=None,
        lifespan=lifespan,
    )
    configure_exception_handlers(app)
    configure_middleware(app)
    setup_routers(app, settings)
    return app


app = create_app()
