"""Common base task and async runner for Celery jobs"""
from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Awaitable, Callable, TypeVar

from celery import Task

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BaseTask(Task):
    """Provides unified failure logging for all fulfillment jobs."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            kwargs=kwargs,
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
        )
        super().on_success(retval, task_id, args, kwargs)


def run_async(job: Callable[[Callable], Awaitable[T]]) -> T:
    """Run ``job(uow_factory)`` on a fresh event loop with a task-scoped engine.

    Pooled async connections are bound to the loop that opened them, so each
    run builds and disposes its own engine.
    """
    from infrastructure.database import build_engine, build_session_factory
    from infrastructure.unit_of_work import build_uow_factory

    async def _main() -> T:
        engine = build_engine(settings.database.url, echo=settings.database.echo)
        try:
            return await job(build_uow_factory(build_session_factory(engine)))
        finally:
            await engine.dispose()

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_main())
    # Eager execution from inside a running loop (development)
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, _main()).result()
