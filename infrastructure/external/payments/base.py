"""
Base payment client implementing shared concerns: retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import PaymentConfirmation, PaymentIntentResult, WebhookEvent
from domain.services.payment_gateway import RefundOutcome
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from shared.codes.payment_codes import PROVIDER_EVENT_TO_INTENT

logger = get_logger(__name__)

# Currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


class BasePaymentClient:
    provider: str = "base"

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(PaymentRecoverableError),
            reraise=True,
        ):
            with attempt:
                return await fn()

    # Default implementations raise to force override where needed
    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> WebhookEvent:
        raise NotImplementedError

    def extract_confirmation(self, event: WebhookEvent) -> Optional[PaymentConfirmation]:
        raise NotImplementedError

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        *,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
        receipt_email: Optional[str] = None,
    ) -> PaymentIntentResult:
        raise NotImplementedError

    async def create_refund(
        self,
        transaction_id: str,
        *,
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RefundOutcome:
        raise NotImplementedError

    # Helpers
    def intent_of(self, event_type: str) -> Optional[str]:
        return PROVIDER_EVENT_TO_INTENT.get(self.provider, {}).get(event_type)

    @staticmethod
    def _exponent(currency: str) -> int:
        return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2

    @classmethod
    def _to_minor(cls, amount: Decimal, currency: str) -> int:
        return int((amount * (Decimal(10) ** cls._exponent(currency))).to_integral_value())

    @classmethod
    def _from_minor(cls, amount_minor: int, currency: str) -> Decimal:
        return Decimal(int(amount_minor)).scaleb(-cls._exponent(currency))

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
