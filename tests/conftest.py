"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings, and provide an
in-memory unit of work for the service tests.

The in-memory unit of work serializes transactions on one asyncio lock and
works on a deep copy of the committed state, so rollbacks, unique keys and
row locks behave like a database at the isolation level the services expect.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")

import asyncio
import copy
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pytest
import stripe

from application.dtos.payments import PaymentIntentResult
from domain.cart.entity import Cart, CartItem, CartStatus
from domain.cart.repository import CartRepository
from domain.catalog.entity import ProductVariant, VariantPrice
from domain.catalog.repository import CatalogRepository
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.entity import InventoryRecord
from domain.inventory.repository import InventoryRepository
from domain.order.entity import (
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    StatusHistoryEntry,
    format_order_number,
)
from domain.order.repository import OrderRepository
from domain.services.payment_gateway import RefundOutcome
from domain.webhook.entity import InboundEvent
from domain.webhook.repository import InboundEventRepository
from infrastructure.external.payments.stripe_client import StripeClient


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryState:
    def __init__(self) -> None:
        self.inbound_events: Dict[tuple, InboundEvent] = {}
        self.inventory: Dict[int, InventoryRecord] = {}
        self.variants: Dict[int, ProductVariant] = {}
        self.carts: Dict[int, Cart] = {}
        self.orders: Dict[str, Order] = {}
        self.sequences: Dict[int, int] = {}
        self.last_id = 0

    def new_id(self) -> int:
        self.last_id += 1
        return self.last_id


class InMemoryStore:
    """Committed state plus seeding helpers."""

    def __init__(self) -> None:
        self.state = InMemoryState()
        self.lock = asyncio.Lock()
        # repository operation name -> exception raised when it is called
        self.faults: Dict[str, Exception] = {}
        self.commits = 0

    # seeding -----------------------------------------------------------
    def add_variant(
        self,
        variant_id: int,
        *,
        stock: int = 10,
        reserved: int = 0,
        prices: Optional[Dict[str, str]] = None,
        allow_backorder: bool = False,
        track_inventory: bool = True,
        is_active: bool = True,
        with_inventory: bool = True,
    ) -> ProductVariant:
        prices = prices if prices is not None else {"EUR": "10.00"}
        variant = ProductVariant(
            id=variant_id,
            product_id=variant_id * 100,
            sku=f"SKU-{variant_id}",
            product_name=f"Product {variant_id}",
            is_active=is_active,
            prices=[VariantPrice(currency=c, amount=Decimal(a)) for c, a in prices.items()],
        )
        self.state.variants[variant_id] = variant
        if with_inventory:
            self.state.inventory[variant_id] = InventoryRecord(
                id=variant_id,
                variant_id=variant_id,
                stock=stock,
                reserved_stock=reserved,
                track_inventory=track_inventory,
                allow_backorder=allow_backorder,
            )
        return variant

    def add_cart(
        self,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        items: Iterable[tuple] = (),
        reserve: bool = True,
        expires_at: Optional[datetime] = None,
        currency: str = "EUR",
    ) -> Cart:
        """Seed an ACTIVE cart; with ``reserve`` its lines are held on inventory."""
        cart_id = self.state.new_id()
        cart = Cart(
            id=cart_id,
            user_id=user_id,
            anonymous_id=anonymous_id,
            currency=currency,
            expires_at=expires_at,
            created_at=_utcnow(),
            updated_at=_utcnow(),
        )
        for variant_id, quantity in items:
            cart.items.append(
                CartItem(
                    variant_id=variant_id,
                    quantity=quantity,
                    id=self.state.new_id(),
                    cart_id=cart_id,
                    added_at=_utcnow(),
                )
            )
            if reserve and variant_id in self.state.inventory:
                self.state.inventory[variant_id].reserved_stock += quantity
        self.state.carts[cart_id] = cart
        return cart

    def add_order(
        self,
        *,
        status: OrderStatus = OrderStatus.PAID,
        user_id: Optional[str] = "user-1",
        anonymous_id: Optional[str] = None,
        items: Iterable[tuple] = ((1, 2),),
        unit_price: str = "10.00",
        external_id: Optional[str] = "pi_paid",
        email: Optional[str] = "buyer@example.com",
    ) -> Order:
        order_number = format_order_number(_utcnow().year, len(self.state.orders) + 1)
        lines = [
            OrderItem(
                variant_id=variant_id,
                product_id=variant_id * 100,
                sku=f"SKU-{variant_id}",
                name=f"Product {variant_id}",
                quantity=quantity,
                unit_price=Decimal(unit_price),
                line_total=Decimal(unit_price) * quantity,
                currency="EUR",
                id=self.state.new_id(),
            )
            for variant_id, quantity in items
        ]
        subtotal = sum((line.line_total for line in lines), Decimal("0"))
        payments = []
        if external_id:
            payments.append(
                Payment(
                    amount=subtotal,
                    currency="EUR",
                    method="STRIPE",
                    external_id=external_id,
                    status=PaymentStatus.COMPLETED,
                    processed_at=_utcnow(),
                    id=self.state.new_id(),
                )
            )
        order = Order(
            id=self.state.new_id(),
            order_number=order_number,
            status=status,
            currency="EUR",
            subtotal_amount=subtotal,
            tax_amount=Decimal("0"),
            shipping_amount=Decimal("0"),
            discount_amount=Decimal("0"),
            total_amount=subtotal,
            user_id=user_id,
            anonymous_id=anonymous_id,
            order_email=email,
            items=lines,
            payments=payments,
            status_history=[
                StatusHistoryEntry(status=status, comment=None, created_by="system", id=self.state.new_id())
            ],
            created_at=_utcnow(),
            updated_at=_utcnow(),
        )
        self.state.orders[order_number] = order
        return order

    # inspection --------------------------------------------------------
    def inventory(self, variant_id: int) -> InventoryRecord:
        return self.state.inventory[variant_id]

    def event(self, source: str, event_id: str) -> Optional[InboundEvent]:
        return self.state.inbound_events.get((source, event_id))

    def order(self, order_number: str) -> Order:
        return self.state.orders[order_number]


class _Repository:
    def __init__(self, state: InMemoryState, faults: Dict[str, Exception]) -> None:
        self.state = state
        self.faults = faults

    def _maybe_fail(self, operation: str) -> None:
        exc = self.faults.get(operation)
        if exc is not None:
            raise exc


class FakeInboundEventRepository(_Repository, InboundEventRepository):
    async def insert_if_absent(self, event):
        key = (event.source, event.event_id)
        existing = self.state.inbound_events.get(key)
        if existing is not None:
            return copy.deepcopy(existing), False
        stored = copy.deepcopy(event)
        stored.id = self.state.new_id()
        stored.created_at = stored.created_at or _utcnow()
        stored.updated_at = stored.created_at
        self.state.inbound_events[key] = stored
        return copy.deepcopy(stored), True

    async def get(self, source, event_id, *, for_update=False):
        record = self.state.inbound_events.get((source, event_id))
        return copy.deepcopy(record) if record else None

    async def update(self, event):
        self.state.inbound_events[(event.source, event.event_id)] = copy.deepcopy(event)
        return event

    async def list_replayable(self, *, older_than, limit=50):
        pending = [
            e for e in self.state.inbound_events.values()
            if not e.processed and not e.retries_exhausted and e.created_at <= older_than
        ]
        pending.sort(key=lambda e: e.created_at)
        return [copy.deepcopy(e) for e in pending[:limit]]


class FakeInventoryRepository(_Repository, InventoryRepository):
    async def get_by_variant(self, variant_id, *, for_update=False):
        record = self.state.inventory.get(variant_id)
        return copy.deepcopy(record) if record else None

    async def get_many(self, variant_ids, *, for_update=False):
        return {
            v: copy.deepcopy(self.state.inventory[v])
            for v in sorted(set(variant_ids))
            if v in self.state.inventory
        }

    async def update(self, record):
        self._maybe_fail("inventory.update")
        self.state.inventory[record.variant_id] = copy.deepcopy(record)
        return record


class FakeCatalogRepository(_Repository, CatalogRepository):
    async def get_variant(self, variant_id):
        variant = self.state.variants.get(variant_id)
        if variant is None:
            return None
        result = copy.deepcopy(variant)
        record = self.state.inventory.get(variant_id)
        result.inventory = copy.deepcopy(record) if record else None
        return result

    async def get_variants(self, variant_ids):
        found = {}
        for variant_id in set(variant_ids):
            variant = await self.get_variant(variant_id)
            if variant is not None:
                found[variant_id] = variant
        return found


class FakeCartRepository(_Repository, CartRepository):
    def _store(self, cart: Cart) -> Cart:
        for item in cart.items:
            if item.id is None:
                item.id = self.state.new_id()
            item.cart_id = cart.id
            item.added_at = item.added_at or _utcnow()
        self.state.carts[cart.id] = copy.deepcopy(cart)
        return cart

    async def get_by_id(self, cart_id, *, for_update=False):
        cart = self.state.carts.get(cart_id)
        return copy.deepcopy(cart) if cart else None

    async def get_active(self, *, user_id=None, anonymous_id=None, for_update=False):
        for cart in self.state.carts.values():
            if cart.status != CartStatus.ACTIVE:
                continue
            if user_id and cart.user_id == user_id:
                return copy.deepcopy(cart)
            if not user_id and anonymous_id and cart.anonymous_id == anonymous_id:
                return copy.deepcopy(cart)
        return None

    async def create(self, cart):
        if await self.get_active(user_id=cart.user_id, anonymous_id=cart.anonymous_id):
            raise ValueError("owner already has an active cart")
        cart.id = self.state.new_id()
        return self._store(cart)

    async def save(self, cart):
        self._maybe_fail("carts.save")
        return self._store(cart)

    async def list_expired(self, *, now, limit=100):
        expired = [
            c for c in self.state.carts.values()
            if c.status == CartStatus.ACTIVE and c.items and c.expires_at is not None and c.expires_at <= now
        ]
        return [copy.deepcopy(c) for c in expired[:limit]]


class FakeOrderRepository(_Repository, OrderRepository):
    async def next_order_number(self, year):
        self._maybe_fail("orders.next_order_number")
        value = self.state.sequences.get(year, 0) + 1
        self.state.sequences[year] = value
        return format_order_number(year, value)

    def _store(self, order: Order) -> Order:
        for entry in order.status_history:
            if entry.id is None:
                entry.id = self.state.new_id()
        for payment in order.payments:
            if payment.id is None:
                payment.id = self.state.new_id()
        for item in order.items:
            if item.id is None:
                item.id = self.state.new_id()
        self.state.orders[order.order_number] = copy.deepcopy(order)
        return order

    async def create(self, order):
        self._maybe_fail("orders.create")
        for existing in self.state.orders.values():
            for payment in existing.payments:
                if any(p.external_id == payment.external_id for p in order.payments):
                    raise ValueError(f"duplicate payment {payment.external_id}")
        order.id = self.state.new_id()
        return self._store(order)

    async def get_by_number(self, order_number, *, for_update=False):
        order = self.state.orders.get(order_number)
        return copy.deepcopy(order) if order else None

    async def get_by_payment_external_id(self, external_id):
        for order in self.state.orders.values():
            if any(p.external_id == external_id for p in order.payments):
                return copy.deepcopy(order)
        return None

    async def update(self, order):
        self._maybe_fail("orders.update")
        return self._store(order)


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.store = store
        self._state: Optional[InMemoryState] = None

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        await self.store.lock.acquire()
        self._state = copy.deepcopy(self.store.state)
        faults = self.store.faults
        self.inbound_events = FakeInboundEventRepository(self._state, faults)
        self.inventory = FakeInventoryRepository(self._state, faults)
        self.catalog = FakeCatalogRepository(self._state, faults)
        self.carts = FakeCartRepository(self._state, faults)
        self.orders = FakeOrderRepository(self._state, faults)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            self.store.lock.release()

    async def commit(self) -> None:
        if not self._readonly:
            self.store.state = copy.deepcopy(self._state)
            self.store.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        self._state = None
        self._committed = False


class RecordingAlerter:
    def __init__(self) -> None:
        self.alerts: List[tuple] = []

    async def notify(self, message: str, **context) -> None:
        self.alerts.append((message, context))


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[tuple] = []
        self.error: Optional[Exception] = None

    def send(self, recipient: str, template_id: str, data: dict) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, template_id, data))

    def templates(self) -> List[str]:
        return [template_id for _, template_id, _ in self.sent]


class FakeStripeGateway(StripeClient):
    """Real Stripe payload mapping with a recorded refund call."""

    def __init__(self) -> None:
        super().__init__(secret_key="sk_test_fake", webhook_secret="whsec_fake")
        self.refunds: List[dict] = []
        self.refund_outcome = RefundOutcome.REFUNDED
        self.refund_error: Optional[Exception] = None
        self.intents: List[dict] = []
        self.intent_error: Optional[Exception] = None

    async def create_payment_intent(self, amount, currency, *, idempotency_key, metadata=None, receipt_email=None):
        self.intents.append(
            {
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "metadata": dict(metadata or {}),
                "receipt_email": receipt_email,
            }
        )
        if self.intent_error is not None:
            raise self.intent_error
        return PaymentIntentResult(
            provider=self.provider,
            intent_id=f"pi_{len(self.intents)}",
            client_secret=f"pi_{len(self.intents)}_secret",
            amount=amount,
            currency=currency.upper(),
            status="requires_payment_method",
        )

    async def create_refund(self, transaction_id, *, idempotency_key=None, reason=None):
        self.refunds.append(
            {"transaction_id": transaction_id, "idempotency_key": idempotency_key, "reason": reason}
        )
        if self.refund_error is not None:
            raise self.refund_error
        return self.refund_outcome


def _fake_construct_event(payload, sig_header, secret, tolerance=None):
    if sig_header != "valid":
        raise stripe.SignatureVerificationError("No signatures found matching the expected signature", sig_header)
    return json.loads(payload)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    def factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)

    return factory


@pytest.fixture
def alerter() -> RecordingAlerter:
    return RecordingAlerter()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def gateway(monkeypatch) -> FakeStripeGateway:
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_fake_construct_event))
    return FakeStripeGateway()


@pytest.fixture
def stripe_event():
    """Build a raw Stripe webhook body."""

    def build(
        event_id: str = "evt_1",
        *,
        cart_id: Optional[int] = 1,
        amount_minor: int = 2000,
        currency: str = "eur",
        event_type: str = "payment_intent.succeeded",
        payment_intent: str = "pi_1",
        email: str = "buyer@example.com",
        metadata: Optional[dict] = None,
    ) -> bytes:
        meta = {"cart_id": str(cart_id)} if cart_id is not None else {}
        meta.update(metadata or {})
        obj = {
            "id": payment_intent,
            "object": "payment_intent",
            "amount": amount_minor,
            "amount_received": amount_minor,
            "currency": currency,
            "receipt_email": email,
            "metadata": meta,
        }
        body = {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": int(_utcnow().timestamp()),
            "data": {"object": obj},
        }
        return json.dumps(body).encode()

    return build


@pytest.fixture
def past():
    return _utcnow() - timedelta(days=1)
