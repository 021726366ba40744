"""Operator alerting adapters."""
from .slack import SlackAlerter

__all__ = ["SlackAlerter"]
