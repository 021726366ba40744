"""Webhook replay tasks.

Events that timed out or hit a transient failure stay unprocessed on the
ledger; these jobs feed them back through the ingestion service.
"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask, run_async
from application.services.webhook_service import WebhookIngestionService
from domain.common.exceptions import BusinessException
from infrastructure.external.alerting import SlackAlerter
from infrastructure.external.notifications import CeleryNotifier
from infrastructure.external.payments import get_payment_gateway
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


def _service(uow_factory, source: str) -> WebhookIngestionService:
    return WebhookIngestionService(
        uow_factory,
        get_payment_gateway(source),
        alerter=SlackAlerter(),
        notifier=CeleryNotifier(),
        source=source,
    )


@shared_task(name="webhooks.replay_event", bind=True, base=BaseTask, max_retries=0)
def replay_event(self, source: str, event_id: str) -> dict:
    async def _job(uow_factory):
        return await _service(uow_factory, source).replay(source, event_id)

    try:
        ack = run_async(_job)
    except BusinessException as exc:
        # The failure is already counted on the ledger; the periodic sweep retries it
        logger.warning("webhook_replay_event_failed", source=source, event_id=event_id, error=exc.message)
        return {"event_id": event_id, "processed": False, "error": exc.message}
    return {"event_id": event_id, **ack.model_dump()}


@shared_task(name="webhooks.replay_pending", bind=True, base=BaseTask)
def replay_pending(self) -> dict:
    async def _job(uow_factory):
        return await _service(uow_factory, settings.webhook.source).replay_pending()

    return run_async(_job)
