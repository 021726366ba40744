from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.cart.calculation import get_price
from domain.cart.entity import Cart, CartItem, CartStatus
from domain.webhook.entity import InboundEvent
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.models import InventoryRecordModel, ProductVariantModel, VariantPriceModel
from infrastructure.unit_of_work import build_uow_factory


@pytest.fixture
def engine(tmp_path):
    return build_engine(f"sqlite:///{tmp_path / 'orders.db'}")


async def _setup(engine):
    await create_tables(bind=engine)
    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        for variant_id, stock in ((1, 5), (2, 3)):
            variant = ProductVariantModel(
                id=variant_id,
                product_id=100 + variant_id,
                product_name=f"Product {variant_id}",
                sku=f"SKU-{variant_id}",
                is_active=True,
            )
            variant.prices.append(VariantPriceModel(currency="EUR", amount=Decimal("9.99"), is_active=True))
            variant.inventory = InventoryRecordModel(stock=stock, reserved_stock=0)
            session.add(variant)
        await session.commit()
    return build_uow_factory(session_factory)


def _event(event_id="evt_1"):
    return InboundEvent(
        id=None,
        source="stripe",
        event_id=event_id,
        event_type="payment_intent.succeeded",
        payload_hash="abc123",
        payload={"id": event_id},
    )


@pytest.mark.asyncio
async def test_inbound_event_insert_is_idempotent(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory() as uow:
            first, created = await uow.inbound_events.insert_if_absent(_event())
        async with uow_factory() as uow:
            second, created_again = await uow.inbound_events.insert_if_absent(_event())

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert second.retry_count == 0 and not second.processed
        assert second.created_at.tzinfo is not None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_inbound_event_update_persists_failure_bookkeeping(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory() as uow:
            event, _ = await uow.inbound_events.insert_if_absent(_event())
            event.record_failure("connection reset")
            await uow.inbound_events.update(event)

        async with uow_factory(readonly=True) as uow:
            stored = await uow.inbound_events.get("stripe", "evt_1")

        assert stored.retry_count == 1
        assert stored.last_error == "connection reset"
        assert not stored.processed
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_rolled_back_unit_of_work_leaves_no_trace(engine):
    uow_factory = await _setup(engine)
    try:
        with pytest.raises(RuntimeError):
            async with uow_factory() as uow:
                await uow.inbound_events.insert_if_absent(_event())
                raise RuntimeError("handler failed")

        async with uow_factory(readonly=True) as uow:
            assert await uow.inbound_events.get("stripe", "evt_1") is None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_order_numbers_are_sequential_per_year(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory() as uow:
            first = await uow.orders.next_order_number(2025)
            second = await uow.orders.next_order_number(2025)
        async with uow_factory() as uow:
            third = await uow.orders.next_order_number(2025)
            other_year = await uow.orders.next_order_number(2026)

        assert [first, second, third] == ["ORD-2025-000001", "ORD-2025-000002", "ORD-2025-000003"]
        assert other_year == "ORD-2026-000001"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_catalog_loads_prices_and_inventory(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory(readonly=True) as uow:
            variants = await uow.catalog.get_variants([1, 2, 3])

        assert sorted(variants) == [1, 2]
        assert get_price(variants[1].prices, "EUR") == Decimal("9.99")
        assert variants[2].inventory.stock == 3
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_inventory_update_round_trip(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory() as uow:
            records = await uow.inventory.get_many([2, 1], for_update=True)
            records[1].reserve(2)
            await uow.inventory.update(records[1])

        async with uow_factory(readonly=True) as uow:
            record = await uow.inventory.get_by_variant(1)

        assert record.reserved_stock == 2
        assert record.available_stock == 3
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_cart_items_are_saved_in_place(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory() as uow:
            cart = await uow.carts.create(Cart.open(user_id="user-1"))
            cart.items = [CartItem(variant_id=1, quantity=2), CartItem(variant_id=2, quantity=1)]
            await uow.carts.save(cart)

        async with uow_factory() as uow:
            cart = await uow.carts.get_active(user_id="user-1", for_update=True)
            cart.items = [CartItem(variant_id=1, quantity=4)]
            await uow.carts.save(cart)

        async with uow_factory(readonly=True) as uow:
            stored = await uow.carts.get_by_id(cart.id)

        assert [(i.variant_id, i.quantity) for i in stored.items] == [(1, 4)]
        assert stored.status == CartStatus.ACTIVE
        assert stored.user_id == "user-1"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_expired_carts_are_listed(engine):
    uow_factory = await _setup(engine)
    try:
        async with uow_factory() as uow:
            cart = Cart.open(anonymous_id="anon-1")
            cart.expires_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
            cart = await uow.carts.create(cart)
            cart.items = [CartItem(variant_id=1, quantity=1)]
            await uow.carts.save(cart)

        async with uow_factory() as uow:
            expired = await uow.carts.list_expired(now=datetime.now(timezone.utc))

        assert [c.id for c in expired] == [cart.id]
    finally:
        await engine.dispose()
