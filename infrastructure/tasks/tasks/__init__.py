"""Task modules grouped by domain.

Import side effects register Celery tasks once this package is imported.
"""
from . import carts, notifications, webhooks  # noqa: F401 to register tasks

__all__ = ["carts", "notifications", "webhooks"]
