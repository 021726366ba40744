import pytest

from application.services.order_service import OrderApplicationService
from domain.common.exceptions import (
    GatewayCompensationFailure,
    IllegalStateTransitionException,
    OrderNotFoundException,
)
from domain.order.entity import OrderStatus, PaymentStatus
from domain.services.payment_gateway import RefundOutcome
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError


@pytest.fixture
def service(uow_factory, gateway, notifier):
    return OrderApplicationService(uow_factory, gateway, notifier=notifier, admin_email="ops@example.com")


@pytest.fixture
def paid_order(store):
    store.add_variant(1, stock=8)
    return store.add_order(status=OrderStatus.PAID, user_id="user-1", items=[(1, 2)])


@pytest.mark.asyncio
async def test_customer_cancel_refunds_once_and_restocks(service, store, paid_order, gateway, notifier):
    dto = await service.cancel_order(paid_order.order_number, user_id="user-1", anonymous_id=None, reason="changed my mind")

    assert dto.status == "CANCELLED"
    assert gateway.refunds == [
        {
            "transaction_id": "pi_paid",
            "idempotency_key": f"refund-{paid_order.order_number}",
            "reason": "changed my mind",
        }
    ]
    order = store.order(paid_order.order_number)
    assert order.status == OrderStatus.CANCELLED
    assert order.payments[0].status == PaymentStatus.REFUNDED
    assert [h.status for h in order.status_history] == [OrderStatus.PAID, OrderStatus.CANCELLED]
    assert order.status_history[-1].created_by == "user-1"
    assert store.inventory(1).stock == 10
    assert notifier.templates() == ["order_cancelled"]


@pytest.mark.asyncio
async def test_cancel_after_shipping_is_rejected_without_refund(service, store, gateway):
    store.add_variant(1)
    order = store.add_order(status=OrderStatus.SHIPPED, user_id="user-1")

    with pytest.raises(IllegalStateTransitionException):
        await service.cancel_order(order.order_number, user_id="user-1", anonymous_id=None)

    assert gateway.refunds == []
    assert store.order(order.order_number).status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_second_cancel_is_rejected(service, store, paid_order, gateway):
    await service.cancel_order(paid_order.order_number, user_id="user-1", anonymous_id=None)

    with pytest.raises(IllegalStateTransitionException) as info:
        await service.cancel_order(paid_order.order_number, user_id="user-1", anonymous_id=None)

    assert info.value.message == "Order is already CANCELLED"
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_already_refunded_at_gateway_still_transitions(service, store, paid_order, gateway):
    gateway.refund_outcome = RefundOutcome.ALREADY_REFUNDED

    dto = await service.update_status(paid_order.order_number, OrderStatus.CANCELLED, comment="fraud", admin_id="admin-7")

    assert dto.status == "CANCELLED"
    assert store.order(paid_order.order_number).status_history[-1].created_by == "admin-7"


@pytest.mark.asyncio
async def test_gateway_failure_blocks_the_transition(service, store, paid_order, gateway, notifier):
    gateway.refund_error = PaymentProviderError("card issuer unavailable", provider="stripe", provider_code="api_error")

    with pytest.raises(GatewayCompensationFailure) as info:
        await service.update_status(paid_order.order_number, OrderStatus.CANCELLED)

    assert info.value.details == {"provider": "stripe", "provider_code": "api_error"}
    order = store.order(paid_order.order_number)
    assert order.status == OrderStatus.PAID
    assert order.payments[0].status == PaymentStatus.COMPLETED
    assert len(order.status_history) == 1
    assert store.inventory(1).stock == 8
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_refund_timeout_blocks_the_transition(service, store, paid_order, gateway):
    gateway.refund_error = PaymentRecoverableError("Refund request timed out", provider="stripe")

    with pytest.raises(GatewayCompensationFailure) as info:
        await service.update_status(paid_order.order_number, OrderStatus.CANCELLED)

    assert info.value.message == "Refund request timed out"
    assert store.order(paid_order.order_number).status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_refund_flow_after_delivery(service, store, gateway, notifier):
    store.add_variant(1, stock=0)
    order = store.add_order(status=OrderStatus.DELIVERED, user_id="user-1", items=[(1, 1)])

    requested = await service.request_refund(
        order.order_number, user_id="user-1", anonymous_id=None, reason="arrived broken"
    )
    assert requested.status == "REFUND_REQUESTED"
    assert gateway.refunds == []
    assert notifier.sent[0][0] == "ops@example.com"
    assert notifier.sent[0][1] == "refund_request_admin"
    assert notifier.sent[0][2]["reason"] == "arrived broken"

    refunded = await service.update_status(order.order_number, OrderStatus.REFUNDED)
    assert refunded.status == "REFUNDED"
    assert len(gateway.refunds) == 1
    assert store.inventory(1).stock == 1
    assert notifier.templates()[-1] == "order_refunded"


@pytest.mark.asyncio
async def test_refund_request_before_delivery_is_rejected(service, paid_order):
    with pytest.raises(IllegalStateTransitionException) as info:
        await service.request_refund(paid_order.order_number, user_id="user-1", anonymous_id=None, reason="too slow")
    assert info.value.message == "Cannot transition order from PAID to REFUND_REQUESTED"


@pytest.mark.asyncio
async def test_cancellation_request_cancels_paid_order(service, store, paid_order):
    dto = await service.request_refund(
        paid_order.order_number,
        user_id="user-1",
        anonymous_id=None,
        reason="ordered twice",
        request_type="CANCELLATION",
    )
    assert dto.status == "CANCELLED"


@pytest.mark.asyncio
async def test_orders_of_other_customers_are_not_found(service, store, paid_order, gateway):
    with pytest.raises(OrderNotFoundException):
        await service.get_order(paid_order.order_number, user_id="someone-else", anonymous_id=None)
    with pytest.raises(OrderNotFoundException):
        await service.cancel_order(paid_order.order_number, user_id="someone-else", anonymous_id=None)
    with pytest.raises(OrderNotFoundException):
        await service.get_order("ORD-1999-000001", user_id="user-1", anonymous_id=None)

    assert gateway.refunds == []
    admin_view = await service.get_order(paid_order.order_number, admin=True)
    assert admin_view.status == "PAID"


@pytest.mark.asyncio
async def test_guest_order_is_visible_to_its_anonymous_owner(service, store):
    store.add_variant(1)
    order = store.add_order(user_id=None, anonymous_id="anon-1")

    dto = await service.get_order(order.order_number, user_id=None, anonymous_id="anon-1")

    assert dto.order_number == order.order_number
    assert dto.payments[0].status == "COMPLETED"


@pytest.mark.asyncio
async def test_shipping_notifies_customer(service, paid_order, notifier):
    dto = await service.update_status(paid_order.order_number, OrderStatus.SHIPPED, comment="DHL 123")

    assert dto.status == "SHIPPED"
    assert notifier.sent[0][0] == "buyer@example.com"
    assert notifier.sent[0][1] == "order_shipped"
    assert notifier.sent[0][2]["status"] == "SHIPPED"


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_transition(service, store, paid_order, notifier):
    notifier.error = RuntimeError("broker down")

    dto = await service.update_status(paid_order.order_number, OrderStatus.SHIPPED)

    assert dto.status == "SHIPPED"
    assert store.order(paid_order.order_number).status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_order_without_payment_cancels_without_gateway_call(service, store, gateway):
    store.add_variant(1)
    order = store.add_order(external_id=None)

    dto = await service.update_status(order.order_number, OrderStatus.CANCELLED)

    assert dto.status == "CANCELLED"
    assert gateway.refunds == []
