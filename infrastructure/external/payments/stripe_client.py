"""
Stripe adapter using the official stripe-python SDK.

Notes on SDK usage:
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header; the verified body is decoded from the raw bytes.
- Idempotency keys are passed with the `idempotency_key` kwarg.
- SDK calls are blocking and run in a worker thread.
"""
from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from typing import Any, Optional

import stripe

from application.dtos.payments import PaymentConfirmation, PaymentIntentResult, WebhookEvent
from domain.services.payment_gateway import RefundOutcome
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    MalformedPayloadError,
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from shared.codes.payment_codes import ALREADY_REFUNDED_CODES
from core.settings import payment_settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def _decimal(value: Any, default: str = "0") -> Decimal:
    if value in (None, ""):
        return Decimal(default)
    return Decimal(str(value))


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, *, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        super().__init__(
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        self._secret_key = secret_key or payment_settings.stripe.secret_key
        self._webhook_secret = webhook_secret or payment_settings.stripe.webhook_secret
        if self._secret_key:
            stripe.api_key = self._secret_key
        if payment_settings.stripe.api_version:
            stripe.api_version = payment_settings.stripe.api_version

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> WebhookEvent:
        if not self._webhook_secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        if not signature:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            stripe.Webhook.construct_event(
                payload=raw_body,
                sig_header=signature,
                secret=self._webhook_secret,
                tolerance=payment_settings.webhook.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc
        except ValueError as exc:
            raise MalformedPayloadError(f"Invalid JSON payload: {exc}", provider=self.provider) from exc

        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise MalformedPayloadError(f"Invalid JSON payload: {exc}", provider=self.provider) from exc
        if not isinstance(payload, dict) or not payload.get("id") or not payload.get("type"):
            raise MalformedPayloadError("Event id or type missing", provider=self.provider)

        return WebhookEvent(
            id=str(payload["id"]),
            type=str(payload["type"]),
            provider=self.provider,
            data=payload.get("data") or {},
            payload=payload,
            created=payload.get("created"),
        )

    def extract_confirmation(self, event: WebhookEvent) -> Optional[PaymentConfirmation]:
        """Map a confirmation event to a captured payment; other events return None."""
        if self.intent_of(event.type) != "payment_confirmed":
            return None
        obj = event.data.get("object") or {}
        metadata = obj.get("metadata") or {}

        if event.type == "checkout.session.completed":
            if obj.get("payment_status") != "paid":
                self._log("stripe_session_not_paid", event_id=event.id, session_id=obj.get("id"))
                return None
            external_id = obj.get("payment_intent")
            amount_minor = obj.get("amount_total")
            customer = obj.get("customer_details") or {}
            email = customer.get("email") or obj.get("customer_email")
            shipping_details = obj.get("shipping_details") or {}
            shipping = shipping_details.get("address") or customer.get("address")
        else:
            external_id = obj.get("id")
            amount_minor = obj.get("amount_received") or obj.get("amount")
            email = obj.get("receipt_email")
            shipping = (obj.get("shipping") or {}).get("address")

        currency = obj.get("currency")
        if not external_id or amount_minor is None or not currency:
            raise MalformedPayloadError(
                "Missing transaction id, amount or currency",
                provider=self.provider,
                details={"event_id": event.id, "event_type": event.type},
            )
        cart_id = metadata.get("cart_id") or metadata.get("cartId")
        try:
            cart_id = int(cart_id)
        except (TypeError, ValueError) as exc:
            raise MalformedPayloadError(
                "Missing cart_id in metadata",
                provider=self.provider,
                details={"event_id": event.id},
            ) from exc

        currency = str(currency).upper()
        return PaymentConfirmation(
            external_id=str(external_id),
            amount=self._from_minor(int(amount_minor), currency),
            currency=currency,
            cart_id=cart_id,
            user_id=metadata.get("user_id") or metadata.get("userId") or None,
            email=email,
            shipping_amount=_decimal(metadata.get("shipping_cost")),
            tax_amount=_decimal(metadata.get("tax")),
            language=metadata.get("locale") or "en",
            shipping_address=shipping or None,
            transaction_data={
                "event_id": event.id,
                "event_type": event.type,
                "object_id": obj.get("id"),
                "amount_minor": int(amount_minor),
            },
        )

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        *,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
        receipt_email: Optional[str] = None,
    ) -> PaymentIntentResult:
        """Create a PaymentIntent for the checkout total; the webhook reads back its metadata."""
        if not self._secret_key:
            raise PaymentProviderError("STRIPE__SECRET_KEY not configured", provider=self.provider)

        currency = currency.upper()
        amount_minor = self._to_minor(amount, currency)
        params: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": dict(metadata or {}),
            "idempotency_key": idempotency_key,
        }
        if receipt_email:
            params["receipt_email"] = receipt_email

        async def _attempt():
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(lambda: stripe.PaymentIntent.create(**params)),
                    timeout=payment_settings.timeouts.total,
                )
            except asyncio.TimeoutError as exc:
                raise PaymentRecoverableError("Payment intent request timed out", provider=self.provider) from exc
            except (stripe.RateLimitError, stripe.APIConnectionError) as exc:
                raise PaymentRecoverableError(
                    str(exc), provider=self.provider, provider_code=getattr(exc, "code", None)
                ) from exc

        try:
            intent = await self._retry(_attempt)
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                getattr(exc, "user_message", None) or str(exc),
                provider=self.provider,
                provider_code=getattr(exc, "code", None),
            ) from exc

        self._log(
            "stripe_payment_intent_created",
            intent_id=intent.get("id"),
            amount_minor=amount_minor,
            currency=currency,
        )
        return PaymentIntentResult(
            provider=self.provider,
            intent_id=str(intent.get("id")),
            client_secret=intent.get("client_secret"),
            amount=amount,
            currency=currency,
            status=intent.get("status"),
        )

    async def create_refund(
        self,
        transaction_id: str,
        *,
        idempotency_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RefundOutcome:
        if not self._secret_key:
            raise PaymentProviderError("STRIPE__SECRET_KEY not configured", provider=self.provider)

        def _call():
            return stripe.Refund.create(
                payment_intent=transaction_id,
                reason="requested_by_customer",
                metadata={"reason": reason or ""},
                idempotency_key=idempotency_key,
            )

        async def _attempt():
            try:
                return await asyncio.wait_for(asyncio.to_thread(_call), timeout=payment_settings.timeouts.total)
            except asyncio.TimeoutError as exc:
                raise PaymentRecoverableError("Refund request timed out", provider=self.provider) from exc
            except (stripe.RateLimitError, stripe.APIConnectionError) as exc:
                raise PaymentRecoverableError(
                    str(exc), provider=self.provider, provider_code=getattr(exc, "code", None)
                ) from exc

        try:
            refund = await self._retry(_attempt)
        except stripe.StripeError as exc:
            code = getattr(exc, "code", None)
            if code in ALREADY_REFUNDED_CODES.get(self.provider, set()):
                self._log("stripe_refund_already_refunded", transaction_id=transaction_id)
                return RefundOutcome.ALREADY_REFUNDED
            raise PaymentProviderError(
                getattr(exc, "user_message", None) or str(exc),
                provider=self.provider,
                provider_code=code,
            ) from exc

        self._log(
            "stripe_refund_created",
            transaction_id=transaction_id,
            refund_id=refund.get("id") if hasattr(refund, "get") else None,
        )
        return RefundOutcome.REFUNDED
