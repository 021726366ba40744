"""
Notifier adapter that hands messages to the Celery email task.
"""
from __future__ import annotations

from typing import Any

from kombu.exceptions import OperationalError

from core.logging_config import get_logger
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


logger = get_logger(__name__)


class CeleryNotifier:
    def __init__(self, dispatcher: TaskDispatcher | None = None) -> None:
        self.dispatcher = dispatcher or TaskDispatcher()

    def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> None:
        try:
            self.dispatcher.send_email(recipient, template_id, data)
        except OperationalError as exc:
            # Broker unavailable; the business operation has already committed
            logger.error("notification_enqueue_failed", template_id=template_id, error=str(exc))
