"""
Payment specific codes and provider event mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    MALFORMED_PAYLOAD = 60005
    COMPENSATION_FAILED = 60010


# Provider event type -> internal intent
PROVIDER_EVENT_TO_INTENT = {
    "stripe": {
        "checkout.session.completed": "payment_confirmed",
        "payment_intent.succeeded": "payment_confirmed",
        "payment_intent.payment_failed": "payment_failed",
        "checkout.session.expired": "checkout_expired",
    },
}

# Provider error codes that mean the charge has already been reversed
ALREADY_REFUNDED_CODES = {
    "stripe": {"charge_already_refunded"},
}
