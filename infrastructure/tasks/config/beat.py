"""Celery beat schedule configuration.

Keeping the structure close to the Celery docs makes copying snippets
straightforward for new periodic jobs.
"""
from __future__ import annotations

CELERY_BEAT_SCHEDULE = {
    # Unprocessed webhook events left behind by timeouts or crashed workers
    "webhooks-replay-pending": {
        "task": "webhooks.replay_pending",
        "schedule": 60.0,
    },
    # Give back stock held by abandoned anonymous carts
    "carts-release-expired": {
        "task": "carts.release_expired",
        "schedule": 300.0,
    },
}
