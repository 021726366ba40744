import json
from decimal import Decimal

import pytest


stripe = pytest.importorskip("stripe")


class _FakeWebhook:
    @staticmethod
    def construct_event(payload, sig_header, secret, tolerance=None):
        if sig_header != "t=1,v1=abc":
            raise stripe.SignatureVerificationError("No signatures found", sig_header)
        return json.loads(payload)


def _client():
    from infrastructure.external.payments.stripe_client import StripeClient

    return StripeClient(secret_key="sk_test_123", webhook_secret="whsec_test")


def _body(event_type="payment_intent.succeeded", obj=None):
    return json.dumps(
        {
            "id": "evt_1",
            "type": event_type,
            "created": 1700000000,
            "data": {"object": obj or {}},
        }
    ).encode()


def test_factory_returns_stripe_client():
    from infrastructure.external.payments import get_payment_gateway
    from infrastructure.external.payments.stripe_client import StripeClient

    assert isinstance(get_payment_gateway("stripe"), StripeClient)
    with pytest.raises(ValueError):
        get_payment_gateway("paypal")


def test_payment_intent_succeeded_maps_to_confirmation(monkeypatch):
    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    gw = _client()
    raw = _body(
        obj={
            "id": "pi_1",
            "amount": 5413,
            "amount_received": 5413,
            "currency": "eur",
            "receipt_email": "buyer@example.com",
            "metadata": {"cart_id": "42", "tax": "8.20", "shipping_cost": "4.95", "locale": "de"},
        }
    )

    event = gw.verify_signature(raw, "t=1,v1=abc")
    confirmation = gw.extract_confirmation(event)

    assert event.id == "evt_1"
    assert event.provider == "stripe"
    assert confirmation.external_id == "pi_1"
    assert confirmation.amount == Decimal("54.13")
    assert confirmation.currency == "EUR"
    assert confirmation.cart_id == 42
    assert confirmation.tax_amount == Decimal("8.20")
    assert confirmation.shipping_amount == Decimal("4.95")
    assert confirmation.language == "de"
    assert confirmation.transaction_data["amount_minor"] == 5413


def test_zero_decimal_currency_amount(monkeypatch):
    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    gw = _client()
    raw = _body(obj={"id": "pi_2", "amount_received": 1200, "currency": "jpy", "metadata": {"cart_id": "1"}})

    confirmation = gw.extract_confirmation(gw.verify_signature(raw, "t=1,v1=abc"))

    assert confirmation.amount == Decimal("1200")


def test_checkout_session_requires_paid_status(monkeypatch):
    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    gw = _client()
    session = {
        "id": "cs_1",
        "payment_intent": "pi_3",
        "amount_total": 2000,
        "currency": "eur",
        "customer_details": {"email": "guest@example.com"},
        "metadata": {"cart_id": "7"},
    }

    unpaid = gw.verify_signature(_body("checkout.session.completed", {**session, "payment_status": "unpaid"}), "t=1,v1=abc")
    paid = gw.verify_signature(_body("checkout.session.completed", {**session, "payment_status": "paid"}), "t=1,v1=abc")

    assert gw.extract_confirmation(unpaid) is None
    confirmation = gw.extract_confirmation(paid)
    assert confirmation.external_id == "pi_3"
    assert confirmation.email == "guest@example.com"


def test_other_events_carry_no_confirmation(monkeypatch):
    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    gw = _client()
    event = gw.verify_signature(_body("payment_intent.payment_failed", {"id": "pi_4"}), "t=1,v1=abc")
    assert gw.extract_confirmation(event) is None


def test_signature_and_payload_errors(monkeypatch):
    from infrastructure.external.payments.exceptions import MalformedPayloadError, PaymentSignatureError

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    gw = _client()
    raw = _body(obj={"id": "pi_1", "amount_received": 100, "currency": "eur", "metadata": {}})

    with pytest.raises(PaymentSignatureError):
        gw.verify_signature(raw, "t=1,v1=forged")
    with pytest.raises(PaymentSignatureError):
        gw.verify_signature(raw, None)
    with pytest.raises(MalformedPayloadError):
        gw.extract_confirmation(gw.verify_signature(raw, "t=1,v1=abc"))
    with pytest.raises(MalformedPayloadError):
        gw.verify_signature(json.dumps({"type": "payment_intent.succeeded"}).encode(), "t=1,v1=abc")


@pytest.mark.asyncio
async def test_refund_passes_idempotency_key(monkeypatch):
    from domain.services.payment_gateway import RefundOutcome

    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return {"id": "re_1"}

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(_create))

    outcome = await _client().create_refund("pi_1", idempotency_key="refund-ORD-2025-000001", reason="cancelled")

    assert outcome == RefundOutcome.REFUNDED
    assert calls[0]["payment_intent"] == "pi_1"
    assert calls[0]["idempotency_key"] == "refund-ORD-2025-000001"
    assert calls[0]["metadata"] == {"reason": "cancelled"}


@pytest.mark.asyncio
async def test_refund_of_already_refunded_charge(monkeypatch):
    from domain.services.payment_gateway import RefundOutcome

    def _create(**kwargs):
        raise stripe.InvalidRequestError("Charge has already been refunded.", "charge", code="charge_already_refunded")

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(_create))

    assert await _client().create_refund("pi_1", idempotency_key="k") == RefundOutcome.ALREADY_REFUNDED


@pytest.mark.asyncio
async def test_refund_provider_error_is_raised(monkeypatch):
    from infrastructure.external.payments.exceptions import PaymentProviderError

    def _create(**kwargs):
        raise stripe.InvalidRequestError("No such payment_intent", "payment_intent", code="resource_missing")

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(_create))

    with pytest.raises(PaymentProviderError) as info:
        await _client().create_refund("pi_missing", idempotency_key="k")
    assert info.value.provider_code == "resource_missing"


@pytest.mark.asyncio
async def test_refund_retries_rate_limits(monkeypatch):
    from domain.services.payment_gateway import RefundOutcome

    attempts = []

    def _create(**kwargs):
        attempts.append(kwargs)
        if len(attempts) < 2:
            raise stripe.RateLimitError("Too many requests")
        return {"id": "re_2"}

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(_create))

    assert await _client().create_refund("pi_1", idempotency_key="k") == RefundOutcome.REFUNDED
    assert len(attempts) == 2
    assert {a["idempotency_key"] for a in attempts} == {"k"}


@pytest.mark.asyncio
async def test_payment_intent_is_created_in_minor_units(monkeypatch):
    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return {"id": "pi_9", "client_secret": "pi_9_secret_x", "status": "requires_payment_method"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(_create))

    intent = await _client().create_payment_intent(
        Decimal("54.13"),
        "eur",
        idempotency_key="checkout-42-abc",
        metadata={"cart_id": "42", "tax": "8.20", "shipping_cost": "4.95"},
    )

    assert intent.intent_id == "pi_9"
    assert intent.client_secret == "pi_9_secret_x"
    assert intent.currency == "EUR"
    assert calls[0]["amount"] == 5413
    assert calls[0]["currency"] == "eur"
    assert calls[0]["idempotency_key"] == "checkout-42-abc"
    assert calls[0]["metadata"]["cart_id"] == "42"
    assert "receipt_email" not in calls[0]


@pytest.mark.asyncio
async def test_payment_intent_zero_decimal_currency_and_errors(monkeypatch):
    from infrastructure.external.payments.exceptions import PaymentProviderError

    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        if kwargs["currency"] == "usd":
            raise stripe.InvalidRequestError("Amount must be at least $0.50 usd", "amount", code="amount_too_small")
        return {"id": "pi_10", "client_secret": "s", "status": "requires_payment_method"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(_create))

    await _client().create_payment_intent(Decimal("1200"), "JPY", idempotency_key="k1", receipt_email="a@b.c")
    assert calls[0]["amount"] == 1200
    assert calls[0]["receipt_email"] == "a@b.c"

    with pytest.raises(PaymentProviderError) as info:
        await _client().create_payment_intent(Decimal("0.10"), "USD", idempotency_key="k2")
    assert info.value.provider_code == "amount_too_small"
