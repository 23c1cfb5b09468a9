"""Background maintenance tasks started by the application lifespan."""

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from schoolgate.core.clock import Clock, utc_now
from schoolgate.core.logging import get_logger
from schoolgate.services.audit import AuditService
from schoolgate.services.token_revocation import TokenRevocationStore

_logger = get_logger("background")

TOKEN_SWEEP_INTERVAL_SECONDS = 300


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.error(f"Background task {task.get_name()} failed: {exc}")


def start_task(coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(task_done_callback)
    return task


async def cancel_tasks(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


async def sweep_revoked_tokens(
    session_factory: Callable, audit: AuditService, clock: Clock = utc_now
) -> int:
    """One sweep of expired revocation records. Returns the number removed."""
    async with session_factory() as db:
        deleted = await TokenRevocationStore(db, audit, clock).sweep()
    if deleted:
        await audit.log_token_cleanup(deleted)
    return deleted


async def token_sweep_loop(
    session_factory: Callable,
    audit: AuditService,
    clock: Clock = utc_now,
    interval_seconds: int = TOKEN_SWEEP_INTERVAL_SECONDS,
) -> None:
    """Periodically remove revocation records whose tokens have expired."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await sweep_revoked_tokens(session_factory, audit, clock)
        except Exception:
            _logger.exception("Error sweeping revoked tokens")
