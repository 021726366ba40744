"""
库存领域实体 - 每个商品规格一条库存账
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from domain.common.exceptions import DomainValidationException


@dataclass(frozen=True)
class StockItem:
    """一次库存操作的条目"""
    variant_id: int
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException(
                f"数量必须大于0: {self.quantity}", field="quantity"
            )


def merge_items(items: Iterable[StockItem]) -> List[StockItem]:
    """合并同一规格的条目，并按 variant_id 排序（统一加锁顺序，避免死锁）"""
    totals: dict[int, int] = {}
    for item in items:
        totals[item.variant_id] = totals.get(item.variant_id, 0) + item.quantity
    return [StockItem(variant_id=v, quantity=q) for v, q in sorted(totals.items())]


@dataclass(frozen=True)
class StockAvailability:
    available: bool
    # None 表示不跟踪库存（无限）
    available_stock: Optional[int]


@dataclass(frozen=True)
class StockShortage:
    variant_id: int
    requested: int
    available_stock: int

    def as_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "requested": self.requested,
            "available_stock": self.available_stock,
        }


@dataclass(frozen=True)
class ReservationResult:
    """预留/扣减的结果：成功或带缺货明细的失败"""
    ok: bool
    shortages: Tuple[StockShortage, ...] = ()

    @classmethod
    def success(cls) -> "ReservationResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, shortages: Iterable[StockShortage]) -> "ReservationResult":
        return cls(ok=False, shortages=tuple(shortages))


@dataclass
class InventoryRecord:
    """
    库存账

    业务规则：
    1. 不允许超卖时，预留后 stock - reserved_stock 必须 >= 0
    2. reserved_stock 不会小于 0
    3. 不跟踪库存的规格永远可售
    """

    id: Optional[int]
    variant_id: int
    stock: int = 0
    reserved_stock: int = 0
    track_inventory: bool = True
    allow_backorder: bool = False
    low_stock_threshold: Optional[int] = None
    updated_at: Optional[datetime] = None

    @property
    def available_stock(self) -> int:
        return self.stock - self.reserved_stock

    def availability(self, quantity: int) -> StockAvailability:
        if not self.track_inventory:
            return StockAvailability(available=True, available_stock=None)
        available = self.available_stock
        return StockAvailability(
            available=available >= quantity or self.allow_backorder,
            available_stock=available,
        )

    def can_fulfil(self, quantity: int) -> bool:
        """按实物库存判断（结账校验/最终扣减使用）"""
        if not self.track_inventory or self.allow_backorder:
            return True
        return self.stock >= quantity

    def reserve(self, quantity: int) -> None:
        if not self.track_inventory:
            return
        self.reserved_stock += quantity
        self._touch()

    def release(self, quantity: int) -> int:
        """释放预留，返回实际释放的数量（不会低于0）"""
        if not self.track_inventory:
            return 0
        released = min(quantity, max(self.reserved_stock, 0))
        self.reserved_stock -= released
        self._touch()
        return released

    def consume(self, quantity: int) -> int:
        """下单时最终扣减：stock 与 reserved_stock 同时减少。

        返回未被预留覆盖的数量（预留已过期时非0）。
        """
        if not self.track_inventory:
            return 0
        covered = min(quantity, max(self.reserved_stock, 0))
        self.stock -= quantity
        self.reserved_stock -= covered
        self._touch()
        return quantity - covered

    def restock(self, quantity: int) -> None:
        """退款/取消后恢复实物库存，不触及预留"""
        if not self.track_inventory:
            return
        self.stock += quantity
        self._touch()

    def is_low_stock(self, default_threshold: Optional[int] = None) -> bool:
        """未设置阈值（规格与全局均无）时不视为低库存"""
        if not self.track_inventory:
            return False
        threshold = self.low_stock_threshold if self.low_stock_threshold is not None else default_threshold
        if threshold is None:
            return False
        return self.available_stock <= threshold

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


@dataclass
class LowStockReached:
    variant_id: int
    available_stock: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class InventoryRecordMissing:
    variant_id: int
    operation: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class UnreservedConsumption:
    """扣减量超过预留量（预留过期或未预留直接下单）"""
    variant_id: int
    quantity: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
