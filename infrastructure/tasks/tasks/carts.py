"""Cart housekeeping tasks"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask, run_async
from application.services.cart_service import CartApplicationService


@shared_task(name="carts.release_expired", bind=True, base=BaseTask)
def release_expired(self) -> dict:
    """Return stock held by abandoned carts to the available pool."""

    async def _job(uow_factory):
        return await CartApplicationService(uow_factory).release_expired()

    return {"released": run_async(_job)}
