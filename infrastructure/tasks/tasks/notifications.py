"""Email notification tasks"""
from __future__ import annotations

from typing import Any, Dict, Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from infrastructure.external.notifications.email_client import EmailClient, EmailDeliveryError
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    name="notifications.send_email",
    bind=True,
    base=BaseTask,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_email(self, recipient: str, template_id: str, data: Dict[str, Any]) -> Optional[str]:
    """Render a template and deliver it through the email provider.

    Unknown templates are a programming error and are not retried.
    """
    message_id = EmailClient().send(recipient, template_id, data)
    logger.info("notification_delivered", template_id=template_id, message_id=message_id)
    return message_id
