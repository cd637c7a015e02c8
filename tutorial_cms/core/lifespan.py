"""Startup and shutdown sequence for the application."""

import asyncio
import logging
from typing import TYPE_CHECKING

from tutorial_cms.core.logging import setup_logging

if TYPE_CHECKING:
    from tutorial_cms.core.context import AppContext

_logger = logging.getLogger(__name__)

# Seconds shutdown waits for in-flight storage writes
SHUTDOWN_DRAIN_TIMEOUT = 10.0


def task_done_callback(task: asyncio.Task) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.error(f"Background task {task.get_name()} failed: {exc}")


async def _token_blacklist_cleanup_loop(context: "AppContext", interval_seconds: int) -> None:
    """Periodically remove expired entries from the token blacklist."""
    from tutorial_cms.services.token_blacklist import purge_expired_tokens

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await purge_expired_tokens(context.database, context.clock)
        except Exception:
            _logger.exception("Error cleaning up token blacklist")


async def bootstrap_admin(context: "AppContext") -> None:
    """Create the ADMIN_USERNAME account when configured."""
    from tutorial_cms.services.users import UserService

    settings = context.settings
    if settings.admin_username is None or settings.admin_password is None:
        _logger.info("ADMIN_USERNAME/ADMIN_PASSWORD not set, skipping admin bootstrap")
        return

    async with context.database.session() as session:
        await UserService(session).ensure_admin(
            settings.admin_username, settings.admin_password.get_secret_value()
        )
        await session.commit()


async def startup(context: "AppContext") -> list[asyncio.Task]:
    """Configure logging, prepare storage and start background loops.

    Returns a list of managed background tasks that must be cancelled on
    shutdown via ``shutdown``.
    """
    from tutorial_cms.middleware.rate_limit_cleanup import rate_limit_cleanup_loop
    from tutorial_cms.security.passwords import dummy_password_hash

    settings = context.settings
    setup_logging(level=settings.log_level, json_output=not settings.debug)

    await context.database.create_all()
    await bootstrap_admin(context)

    # Compute the timing-equalization hash before the first login
    await asyncio.to_thread(dummy_password_hash)

    tasks: list[asyncio.Task] = []

    rate_limit_task = asyncio.create_task(
        rate_limit_cleanup_loop(context.rate_limiter), name="rate-limit-cleanup"
    )
    rate_limit_task.add_done_callback(task_done_callback)
    tasks.append(rate_limit_task)

    if settings.blacklist_cleanup_interval_seconds > 0:
        blacklist_task = asyncio.create_task(
            _token_blacklist_cleanup_loop(context, settings.blacklist_cleanup_interval_seconds),
            name="token-blacklist-cleanup",
        )
        blacklist_task.add_done_callback(task_done_callback)
        tasks.append(blacklist_task)

    return tasks


async def shutdown(
    context: "AppContext",
    tasks: list[asyncio.Task],
    drain_timeout: float = SHUTDOWN_DRAIN_TIMEOUT,
) -> None:
    """Stop the periodic loops, let in-flight writes finish, then close the engine.

    Writes spawned by request handlers (failure counts, blacklist entries) get
    up to ``drain_timeout`` seconds; anything still running after that is
    cancelled.
    """
    for task in tasks:
        task.cancel()
    await _await_cancelled(tasks)

    pending = list(context.background_tasks)
    if pending:
        _logger.info(f"Waiting for {len(pending)} background task(s) to finish")
        _, stragglers = await asyncio.wait(pending, timeout=drain_timeout)
        if stragglers:
            _logger.warning(
                f"Cancelling {len(stragglers)} background task(s) still running after "
                f"{drain_timeout}s"
            )
            for task in stragglers:
                task.cancel()
            await _await_cancelled(stragglers)

    await context.database.dispose()


async def _await_cancelled(tasks) -> None:
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            _logger.exception(f"Background task {task.get_name()} failed during shutdown")
