"""Keeps stage work running when the requesting client goes away."""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from sqlalchemy.orm import Session

from api.config.database import Database

logger = structlog.get_logger()

T = TypeVar("T")


def _log_orphaned_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Stage failed after client disconnected", error=str(exc), error_type=type(exc).__name__)


async def run_shielded(coro: Awaitable[T]) -> T:
    """Await coro without letting request cancellation abort it.

    If the caller is cancelled the stage keeps running to completion and
    persists its result; a late failure is logged since nobody is
    listening for it.
    """
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        logger.info("Client disconnected; stage continues in background")
        task.add_done_callback(_log_orphaned_failure)
        raise


async def run_stage(database: Database, stage: Callable[[Session], Awaitable[T]]) -> T:
    """Run stage with a session it owns, shielded from request cancellation.

    The request-scoped session is closed as soon as the request ends, so a
    shielded stage gets its own and must build its response before
    returning.
    """

    async def work() -> T:
        db = database.session()
        try:
            return await stage(db)
        finally:
            db.close()

    return await run_shielded(work())
