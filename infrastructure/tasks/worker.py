"""Local entry point for the fulfillment worker.

Deployments normally run ``celery -A infrastructure.tasks worker``; this
script consumes every queue and embeds beat so webhook replays and cart
sweeps run in a single process during development.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


QUEUES = ("high", "default", "low")


def main(argv: list[str] | None = None) -> None:
    args = [
        "worker",
        "--hostname=fulfillment@%h",
        f"--queues={','.join(QUEUES)}",
        "--beat",
        "--loglevel=INFO",
    ]
    celery_app.worker_main(argv=args + list(argv if argv is not None else sys.argv[1:]))


if __name__ == "__main__":
    main()
