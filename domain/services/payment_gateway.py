"""
Refund gateway abstraction (domain/service).

This layer must not import infrastructure. It defines the compensating
action contract the order state machine relies upon.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol, runtime_checkable


class RefundOutcome(str, Enum):
    REFUNDED = "refunded"
    # The charge was reversed earlier; the local transition may proceed
    ALREADY_REFUNDED = "already_refunded"


@runtime_checkable
class RefundGateway(Protocol):
    """Reverse a captured charge.

    Returns a RefundOutcome, or raises PaymentProviderError for any other
    provider failure (which must block the local status transition).
    """

    provider: str

    async def create_refund(
        self,
        transaction_id: str,
        *,
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RefundOutcome: ...
