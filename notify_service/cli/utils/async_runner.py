"""Running async code from click commands."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

T = TypeVar("T")


def coro(f: Callable[..., Awaitable[T]]) -> Callable[..., T]:
    """
    Decorator that makes an async function synchronous for Click.

    The wrapped command also closes the database engine before the event
    loop goes away.

    Usage:
        @cli.command()
        @coro
        async def my_command():
            result = await some_async_function()
            click.echo(result)
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        async def _run() -> T:
            from notify_service.infra.database import close_database
            from notify_service.infra.ratelimit import close_rate_limiter

            try:
                return await f(*args, **kwargs)
            finally:
                await close_rate_limiter()
                await close_database()

        return asyncio.run(_run())

    return wrapper
