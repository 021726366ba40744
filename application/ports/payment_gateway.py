"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import PaymentConfirmation, PaymentIntentResult, WebhookEvent
from domain.services.payment_gateway import RefundOutcome


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> WebhookEvent: ...

    def extract_confirmation(self, event: WebhookEvent) -> Optional[PaymentConfirmation]: ...

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        *,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
        receipt_email: Optional[str] = None,
    ) -> PaymentIntentResult: ...

    async def create_refund(
        self,
        transaction_id: str,
        *,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> RefundOutcome: ...
