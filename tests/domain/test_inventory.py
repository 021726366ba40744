import copy

import pytest

from domain.common.exceptions import DomainValidationException, InsufficientStockException
from domain.inventory.entity import (
    InventoryRecord,
    InventoryRecordMissing,
    LowStockReached,
    StockItem,
    UnreservedConsumption,
)
from domain.inventory.repository import InventoryRepository
from domain.inventory.service import InventoryReservationManager


class _Repo(InventoryRepository):
    def __init__(self, *records):
        self.records = {r.variant_id: r for r in records}
        self.locked = []

    async def get_by_variant(self, variant_id, *, for_update=False):
        record = self.records.get(variant_id)
        return copy.deepcopy(record) if record else None

    async def get_many(self, variant_ids, *, for_update=False):
        ids = sorted(set(variant_ids))
        if for_update:
            self.locked.append(ids)
        return {v: copy.deepcopy(self.records[v]) for v in ids if v in self.records}

    async def update(self, record):
        self.records[record.variant_id] = copy.deepcopy(record)
        return record


def _record(variant_id=1, **kwargs):
    kwargs.setdefault("stock", 5)
    return InventoryRecord(id=variant_id, variant_id=variant_id, **kwargs)


@pytest.mark.asyncio
async def test_reserve_then_release_restores_reserved_stock():
    repo = _Repo(_record(stock=10))
    manager = InventoryReservationManager(repo)

    await manager.reserve([StockItem(1, 3)])
    assert repo.records[1].reserved_stock == 3
    assert repo.records[1].available_stock == 7

    await manager.release([StockItem(1, 3)])
    assert repo.records[1].reserved_stock == 0
    assert repo.records[1].stock == 10


@pytest.mark.asyncio
async def test_reserve_more_than_available_fails_without_change():
    repo = _Repo(_record(stock=5))
    manager = InventoryReservationManager(repo)

    with pytest.raises(InsufficientStockException) as info:
        await manager.reserve([StockItem(1, 6)])

    assert repo.records[1].reserved_stock == 0
    assert info.value.shortages == [{"variant_id": 1, "requested": 6, "available_stock": 5}]


@pytest.mark.asyncio
async def test_batch_reserve_is_all_or_nothing():
    repo = _Repo(_record(1, stock=5), _record(2, stock=1))
    manager = InventoryReservationManager(repo)

    result = await manager.try_reserve([StockItem(1, 2), StockItem(2, 2)])

    assert not result.ok
    assert [s.variant_id for s in result.shortages] == [2]
    assert repo.records[1].reserved_stock == 0


@pytest.mark.asyncio
async def test_reserve_merges_lines_and_locks_in_variant_order():
    repo = _Repo(_record(1, stock=10), _record(2, stock=10))
    manager = InventoryReservationManager(repo)

    await manager.reserve([StockItem(2, 1), StockItem(1, 2), StockItem(2, 3)])

    assert repo.locked == [[1, 2]]
    assert repo.records[2].reserved_stock == 4


@pytest.mark.asyncio
async def test_reserve_allows_backorder_and_ignores_untracked():
    repo = _Repo(
        _record(1, stock=0, allow_backorder=True),
        _record(2, stock=0, track_inventory=False),
    )
    manager = InventoryReservationManager(repo)

    await manager.reserve([StockItem(1, 4), StockItem(2, 100)])

    assert repo.records[1].reserved_stock == 4
    assert repo.records[2].reserved_stock == 0


@pytest.mark.asyncio
async def test_missing_record_is_unavailable():
    manager = InventoryReservationManager(_Repo())

    availability = await manager.check_availability(9, 1)
    assert availability.available is False

    with pytest.raises(InsufficientStockException):
        await manager.reserve([StockItem(9, 1)])


@pytest.mark.asyncio
async def test_release_never_goes_negative():
    repo = _Repo(_record(stock=5, reserved_stock=1))
    manager = InventoryReservationManager(repo)

    await manager.release([StockItem(1, 4)])

    assert repo.records[1].reserved_stock == 0


@pytest.mark.asyncio
async def test_decrement_consumes_stock_and_reservation():
    repo = _Repo(_record(stock=5, reserved_stock=2))
    manager = InventoryReservationManager(repo)

    await manager.decrement([StockItem(1, 2)])

    assert repo.records[1].stock == 3
    assert repo.records[1].reserved_stock == 0
    assert not [e for e in manager.get_domain_events() if isinstance(e, UnreservedConsumption)]


@pytest.mark.asyncio
async def test_decrement_beyond_reservation_clamps_and_reports():
    repo = _Repo(_record(stock=5, reserved_stock=1))
    manager = InventoryReservationManager(repo, low_stock_threshold=0)

    await manager.decrement([StockItem(1, 3)])

    assert repo.records[1].stock == 2
    assert repo.records[1].reserved_stock == 0
    events = manager.get_domain_events()
    assert events[0] == UnreservedConsumption(variant_id=1, quantity=2, occurred_at=events[0].occurred_at)


@pytest.mark.asyncio
async def test_decrement_fails_when_physical_stock_is_short():
    repo = _Repo(_record(stock=1, reserved_stock=1))
    manager = InventoryReservationManager(repo)

    with pytest.raises(InsufficientStockException):
        await manager.decrement([StockItem(1, 2)])
    assert repo.records[1].stock == 1


@pytest.mark.asyncio
async def test_increment_restocks_and_reports_missing_records():
    repo = _Repo(_record(stock=2, reserved_stock=1))
    manager = InventoryReservationManager(repo)

    await manager.increment([StockItem(1, 3), StockItem(7, 1)])

    assert repo.records[1].stock == 5
    assert repo.records[1].reserved_stock == 1
    events = manager.get_domain_events()
    assert any(isinstance(e, InventoryRecordMissing) and e.variant_id == 7 for e in events)


@pytest.mark.asyncio
async def test_low_stock_event_after_reservation():
    repo = _Repo(_record(stock=6))
    manager = InventoryReservationManager(repo, low_stock_threshold=5)

    await manager.reserve([StockItem(1, 2)])

    events = manager.get_domain_events()
    assert len(events) == 1
    assert isinstance(events[0], LowStockReached)
    assert events[0].available_stock == 4
    assert manager.get_domain_events() == []


@pytest.mark.asyncio
async def test_no_threshold_means_never_low_stock():
    repo = _Repo(_record(stock=3))
    manager = InventoryReservationManager(repo)

    await manager.reserve([StockItem(1, 3)])

    assert manager.get_domain_events() == []
    assert await manager.is_low_stock(1) is False


@pytest.mark.asyncio
async def test_variant_threshold_wins_over_the_fallback():
    repo = _Repo(_record(stock=10, low_stock_threshold=8))
    manager = InventoryReservationManager(repo, low_stock_threshold=1)

    await manager.reserve([StockItem(1, 2)])

    assert await manager.is_low_stock(1) is True
    assert [type(e) for e in manager.get_domain_events()] == [LowStockReached]


def test_stock_item_rejects_non_positive_quantity():
    with pytest.raises(DomainValidationException):
        StockItem(1, 0)
