"""
Base task class for tasks that need the database.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from celery import Task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ..config import get_settings
from ..database import create_session_factory

logger = logging.getLogger(__name__)


class DatabaseTask(Task):
    """
    Runs an async body on a fresh event loop with its own engine.

    Each task invocation gets a new loop, so the engine is created per run
    with ``NullPool``; pooled asyncpg connections cannot cross loops.
    """

    abstract = True

    def run_async(self, body: Callable[[async_sessionmaker[AsyncSession]], Awaitable[Any]]) -> Any:
        async def _run():
            engine = create_async_engine(get_settings().database_url, poolclass=NullPool)
            try:
                return await body(create_session_factory(engine))
            finally:
                await engine.dispose()

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(_run())
        finally:
            loop.close()

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            f"Task {self.name} [{task_id}] failed: {exc}",
            extra={"task_args": args, "exception_type": type(exc).__name__},
        )

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(f"Task {self.name} [{task_id}] retrying after: {exc}")
