"""Application layer orchestration for checkout (application/services).

The cart already holds its stock reservations; checkout re-validates the
lines against live stock and prices, computes the total in the requested
currency and opens a gateway payment intent carrying the cart metadata the
webhook later reads back.
"""
from __future__ import annotations

import hashlib
import json
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional

from application.dto import CheckoutIntentDTO
from application.ports.payment_gateway import PaymentGateway
from application.services.cart_service import normalize_currency
from domain.cart.calculation import calculate_cart, validate_cart_for_checkout
from domain.cart.service import CartDomainService
from domain.common.exceptions import CheckoutValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.service import InventoryReservationManager
from domain.order.entity import OrderTotals
from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def _idempotency_key(cart_id: int, amount: Decimal, currency: str, metadata: dict, email: Optional[str]) -> str:
    # Same cart state -> same key, so a double-submitted checkout reuses one intent
    fingerprint = json.dumps(
        {"amount": str(amount), "currency": currency, "metadata": metadata, "email": email or ""},
        sort_keys=True,
    )
    return f"checkout-{cart_id}-{hashlib.sha256(fingerprint.encode()).hexdigest()[:24]}"


class CheckoutApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        default_currency: Optional[str] = None,
        anonymous_ttl: Optional[timedelta] = None,
    ):
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.default_currency = default_currency or settings.cart.default_currency
        self.anonymous_ttl = anonymous_ttl or timedelta(days=settings.cart.anonymous_ttl_days)

    async def create_payment_intent(
        self,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        currency: Optional[str] = None,
        shipping_amount: Decimal = Decimal("0"),
        tax_amount: Decimal = Decimal("0"),
        locale: Optional[str] = None,
        email: Optional[str] = None,
    ) -> CheckoutIntentDTO:
        """Validate the caller's cart and open a payment intent for its total.

        Raises CheckoutValidationException when the cart is empty, a line has
        no price in the currency, or stock can no longer cover a line.
        """
        async with self._uow_factory() as uow:
            carts = CartDomainService(
                uow.carts,
                uow.catalog,
                InventoryReservationManager(uow.inventory),
                default_currency=self.default_currency,
                anonymous_ttl=self.anonymous_ttl,
            )
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id, for_update=True)
            code = normalize_currency(currency, cart.currency)
            variants = await uow.catalog.get_variants([i.variant_id for i in cart.items])
            result = validate_cart_for_checkout(cart, variants, code)
            calculation = calculate_cart(cart, variants, code)
            await uow.commit()

        if not result.valid:
            logger.info("checkout_rejected", cart_id=cart.id, currency=code, errors=list(result.errors))
            raise CheckoutValidationException(result.errors)

        totals = OrderTotals.compute(calculation.subtotal, tax=tax_amount, shipping=shipping_amount)
        if totals.total <= 0:
            raise CheckoutValidationException([f"Order total must be positive, got {totals.total}"])

        metadata = {
            "cart_id": str(cart.id),
            "user_id": cart.user_id or "",
            "anonymous_id": cart.anonymous_id or "",
            "subtotal": str(totals.subtotal),
            "tax": str(totals.tax),
            "shipping_cost": str(totals.shipping),
            "locale": locale or "",
        }
        intent = await self.gateway.create_payment_intent(
            totals.total,
            code,
            idempotency_key=_idempotency_key(cart.id, totals.total, code, metadata, email),
            metadata=metadata,
            receipt_email=email,
        )
        logger.info(
            "checkout_intent_created",
            cart_id=cart.id,
            provider=intent.provider,
            intent_id=intent.intent_id,
            total=str(totals.total),
            currency=code,
        )
        return CheckoutIntentDTO(
            provider=intent.provider,
            payment_intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            status=intent.status,
            cart_id=cart.id,
            currency=code,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
        )
