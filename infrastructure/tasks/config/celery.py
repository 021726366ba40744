"""Celery application configuration"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

# Modules holding the fulfillment tasks; importing them registers the tasks.
CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)


celery_app = Celery("fulfillment")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Ack after the task body ran; a replay that dies mid-flight is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
        Queue("low"),
    ),
    # Webhook replays must land inside the gateway retry window; cart sweeps can wait
    task_routes={
        "webhooks.*": {"queue": "high"},
        "notifications.*": {"queue": "default"},
        "carts.*": {"queue": "low"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

# Local and test runs execute tasks inline so no broker is needed
if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        eager=bool(sender.conf.task_always_eager),
        periodic_tasks=sorted(sender.conf.beat_schedule or {}),
    )
