"""Transactional email adapters."""
from .email_client import EmailClient, EmailDeliveryError
from .notifier import CeleryNotifier

__all__ = ["EmailClient", "EmailDeliveryError", "CeleryNotifier"]
