from decimal import Decimal

import pytest

from application.services.checkout_service import CheckoutApplicationService
from domain.common.exceptions import CheckoutValidationException, DomainValidationException
from infrastructure.external.payments.exceptions import PaymentProviderError


@pytest.fixture
def service(uow_factory, gateway):
    return CheckoutApplicationService(uow_factory, gateway, default_currency="EUR")


@pytest.mark.asyncio
async def test_intent_carries_the_cart_total_and_metadata(service, store, gateway):
    store.add_variant(1, stock=10, prices={"EUR": "2.345", "USD": "3.00"})
    store.add_variant(2, stock=10, prices={"EUR": "10.00"})
    cart = store.add_cart(user_id="user-1", items=[(1, 2), (2, 1)])

    intent = await service.create_payment_intent(
        user_id="user-1",
        anonymous_id=None,
        shipping_amount=Decimal("4.95"),
        tax_amount=Decimal("1.005"),
        locale="de",
        email="buyer@example.com",
    )

    # 2 x 2.345 = 4.69 (half-even), + 10.00
    assert intent.subtotal == Decimal("14.69")
    assert intent.tax == Decimal("1.00")
    assert intent.shipping == Decimal("4.95")
    assert intent.total == Decimal("20.64")
    assert intent.cart_id == cart.id
    assert intent.client_secret == "pi_1_secret"

    (call,) = gateway.intents
    assert call["amount"] == Decimal("20.64")
    assert call["currency"] == "EUR"
    assert call["receipt_email"] == "buyer@example.com"
    assert call["metadata"] == {
        "cart_id": str(cart.id),
        "user_id": "user-1",
        "anonymous_id": "",
        "subtotal": "14.69",
        "tax": "1.00",
        "shipping_cost": "4.95",
        "locale": "de",
    }
    assert call["idempotency_key"].startswith(f"checkout-{cart.id}-")


@pytest.mark.asyncio
async def test_same_cart_state_reuses_the_idempotency_key(service, store, gateway):
    store.add_variant(1, stock=10)
    store.add_cart(anonymous_id="anon-1", items=[(1, 1)])

    await service.create_payment_intent(user_id=None, anonymous_id="anon-1")
    await service.create_payment_intent(user_id=None, anonymous_id="anon-1")
    await service.create_payment_intent(user_id=None, anonymous_id="anon-1", shipping_amount=Decimal("5"))

    keys = [call["idempotency_key"] for call in gateway.intents]
    assert keys[0] == keys[1]
    assert keys[2] != keys[0]


@pytest.mark.asyncio
async def test_empty_cart_is_rejected_before_the_gateway(service, store, gateway):
    with pytest.raises(CheckoutValidationException) as info:
        await service.create_payment_intent(user_id="user-1", anonymous_id=None)

    assert info.value.errors == ["Cart is empty"]
    assert gateway.intents == []


@pytest.mark.asyncio
async def test_stock_shortfall_is_rejected_before_the_gateway(service, store, gateway):
    store.add_variant(1, stock=1)
    store.add_cart(user_id="user-1", items=[(1, 2)], reserve=False)

    with pytest.raises(CheckoutValidationException) as info:
        await service.create_payment_intent(user_id="user-1", anonymous_id=None)

    assert "Insufficient stock" in info.value.errors[0]
    assert gateway.intents == []


@pytest.mark.asyncio
async def test_missing_price_in_requested_currency_is_rejected(service, store, gateway):
    store.add_variant(1, stock=10, prices={"EUR": "10.00"})
    store.add_cart(user_id="user-1", items=[(1, 1)])

    with pytest.raises(CheckoutValidationException) as info:
        await service.create_payment_intent(user_id="user-1", anonymous_id=None, currency="usd")

    assert info.value.errors == ["No price in USD for Product 1"]
    assert gateway.intents == []
    with pytest.raises(DomainValidationException):
        await service.create_payment_intent(user_id="user-1", anonymous_id=None, currency="euro")


@pytest.mark.asyncio
async def test_gateway_failure_propagates_and_keeps_reservations(service, store, gateway):
    store.add_variant(1, stock=10)
    store.add_cart(user_id="user-1", items=[(1, 3)])
    gateway.intent_error = PaymentProviderError("card network down", provider="stripe")

    with pytest.raises(PaymentProviderError):
        await service.create_payment_intent(user_id="user-1", anonymous_id=None)

    assert store.inventory(1).reserved_stock == 3
    assert store.state.orders == {}
