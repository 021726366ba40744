"""
库存预留领域服务

预留（reserve）是结账过程中的软占用，可释放；
扣减（decrement）是下单时不可逆的消耗。两者分离，避免未完成的结账长期阻塞其他顾客。
"""
from typing import Iterable, List, Optional

from domain.common.exceptions import InsufficientStockException
from .entity import (
    InventoryRecord,
    InventoryRecordMissing,
    LowStockReached,
    ReservationResult,
    StockAvailability,
    StockItem,
    StockShortage,
    UnreservedConsumption,
    merge_items,
)
from .repository import InventoryRepository


class InventoryReservationManager:
    """库存预留 / 释放 / 扣减 / 回补

    所有写操作都应在同一工作单元（事务）内调用，行锁按 variant_id 升序获取。
    """

    def __init__(self, repository: InventoryRepository, *, low_stock_threshold: Optional[int] = None):
        self.repository = repository
        self.low_stock_threshold = low_stock_threshold
        self.events: List = []  # 领域事件收集

    async def check_availability(self, variant_id: int, quantity: int) -> StockAvailability:
        record = await self.repository.get_by_variant(variant_id)
        if record is None:
            return StockAvailability(available=False, available_stock=0)
        return record.availability(quantity)

    async def try_reserve(self, items: Iterable[StockItem]) -> ReservationResult:
        """整批预留：任一条目不足则整批不变更"""
        merged = merge_items(items)
        records = await self.repository.get_many([i.variant_id for i in merged], for_update=True)

        shortages = []
        for item in merged:
            record = records.get(item.variant_id)
            if record is None:
                shortages.append(StockShortage(item.variant_id, item.quantity, 0))
                continue
            availability = record.availability(item.quantity)
            if not availability.available:
                shortages.append(
                    StockShortage(item.variant_id, item.quantity, availability.available_stock or 0)
                )
        if shortages:
            return ReservationResult.failure(shortages)

        for item in merged:
            record = records[item.variant_id]
            if not record.track_inventory:
                continue
            record.reserve(item.quantity)
            await self.repository.update(record)
            self._check_low_stock(record)
        return ReservationResult.success()

    async def reserve(self, items: Iterable[StockItem]) -> None:
        result = await self.try_reserve(items)
        if not result.ok:
            raise InsufficientStockException([s.as_dict() for s in result.shortages])

    async def release(self, items: Iterable[StockItem]) -> None:
        merged = merge_items(items)
        records = await self.repository.get_many([i.variant_id for i in merged], for_update=True)
        for item in merged:
            record = records.get(item.variant_id)
            if record is None:
                self.events.append(InventoryRecordMissing(variant_id=item.variant_id, operation="release"))
                continue
            if not record.track_inventory:
                continue
            record.release(item.quantity)
            await self.repository.update(record)

    async def try_decrement(self, items: Iterable[StockItem]) -> ReservationResult:
        """下单时扣减 stock 与 reserved_stock；实物库存不足（且不允许超卖）时整批失败"""
        merged = merge_items(items)
        records = await self.repository.get_many([i.variant_id for i in merged], for_update=True)

        shortages = []
        for item in merged:
            record = records.get(item.variant_id)
            if record is None:
                shortages.append(StockShortage(item.variant_id, item.quantity, 0))
            elif not record.can_fulfil(item.quantity):
                shortages.append(StockShortage(item.variant_id, item.quantity, record.stock))
        if shortages:
            return ReservationResult.failure(shortages)

        for item in merged:
            record = records[item.variant_id]
            if not record.track_inventory:
                continue
            uncovered = record.consume(item.quantity)
            if uncovered:
                self.events.append(UnreservedConsumption(variant_id=item.variant_id, quantity=uncovered))
            await self.repository.update(record)
            self._check_low_stock(record)
        return ReservationResult.success()

    async def decrement(self, items: Iterable[StockItem]) -> None:
        result = await self.try_decrement(items)
        if not result.ok:
            raise InsufficientStockException([s.as_dict() for s in result.shortages])

    async def increment(self, items: Iterable[StockItem]) -> None:
        """退款/取消后回补实物库存"""
        merged = merge_items(items)
        records = await self.repository.get_many([i.variant_id for i in merged], for_update=True)
        for item in merged:
            record = records.get(item.variant_id)
            if record is None:
                self.events.append(InventoryRecordMissing(variant_id=item.variant_id, operation="increment"))
                continue
            if not record.track_inventory:
                continue
            record.restock(item.quantity)
            await self.repository.update(record)

    async def is_low_stock(self, variant_id: int) -> bool:
        record = await self.repository.get_by_variant(variant_id)
        if record is None:
            return False
        return record.is_low_stock(self.low_stock_threshold)

    def _check_low_stock(self, record: InventoryRecord) -> None:
        if record.is_low_stock(self.low_stock_threshold):
            self.events.append(
                LowStockReached(variant_id=record.variant_id, available_stock=record.available_stock)
            )

    def get_domain_events(self) -> List:
        events = self.events[:]
        self.events.clear()
        return events
