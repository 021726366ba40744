"""
Payment gateway clients keyed by the provider name used in webhook URLs.
"""
from __future__ import annotations

from typing import Callable, Dict, Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway


def _stripe() -> PaymentGateway:
    from .stripe_client import StripeClient

    return StripeClient()


GATEWAYS: Dict[str, Callable[[], PaymentGateway]] = {
    "stripe": _stripe,
}


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    """Build the client for ``provider``; unknown names raise ValueError."""
    name = (provider or payment_settings.default_provider).lower()
    try:
        factory = GATEWAYS[name]
    except KeyError:
        raise ValueError(f"Unsupported payment provider: {name}") from None
    return factory()
