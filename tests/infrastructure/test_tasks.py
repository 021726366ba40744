import pytest


def test_beat_schedule_points_at_registered_tasks():
    from infrastructure.tasks import celery_app
    from infrastructure.tasks.config import CELERY_BEAT_SCHEDULE
    import infrastructure.tasks.tasks  # noqa: F401

    scheduled = {entry["task"] for entry in CELERY_BEAT_SCHEDULE.values()}

    assert scheduled == {"webhooks.replay_pending", "carts.release_expired"}
    assert scheduled <= set(celery_app.tasks)


def test_send_email_task_delivers_through_client(monkeypatch):
    from infrastructure.tasks.tasks import notifications

    sent = []

    class _Client:
        def send(self, recipient, template_id, data):
            sent.append((recipient, template_id, data))
            return "msg_1"

    monkeypatch.setattr(notifications, "EmailClient", _Client)

    result = notifications.send_email.apply(
        kwargs={"recipient": "buyer@example.com", "template_id": "order_shipped", "data": {"order_number": "X"}}
    )

    assert result.get() == "msg_1"
    assert sent == [("buyer@example.com", "order_shipped", {"order_number": "X"})]


def test_replay_event_task_reports_business_failures(monkeypatch):
    from domain.common.exceptions import RetryableProcessingError
    from infrastructure.tasks.tasks import webhooks

    def _run_async(job):
        raise RetryableProcessingError("deadlock detected")

    monkeypatch.setattr(webhooks, "run_async", _run_async)

    result = webhooks.replay_event.apply(kwargs={"source": "stripe", "event_id": "evt_1"})

    assert result.get() == {"event_id": "evt_1", "processed": False, "error": "deadlock detected"}


@pytest.mark.asyncio
async def test_run_async_works_inside_a_running_loop():
    from infrastructure.tasks.utils import base_task

    async def _job(uow_factory):
        return callable(uow_factory)

    assert base_task.run_async(_job) is True
