"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict, Optional

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by adapters to schedule tasks.

    Task objects are resolved lazily and sent with apply_async so eager mode
    (development/test) runs them inline instead of hitting the broker.
    """

    def send_email(self, recipient: str, template_id: str, data: Dict[str, Any]) -> None:
        from ..tasks.notifications import send_email

        send_email.apply_async(
            kwargs={"recipient": recipient, "template_id": template_id, "data": data},
        )

    def replay_event(self, source: str, event_id: str, *, countdown: Optional[int] = None) -> None:
        from ..tasks.webhooks import replay_event

        replay_event.apply_async(
            kwargs={"source": source, "event_id": event_id},
            countdown=countdown,
        )

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
