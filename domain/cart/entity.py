"""
购物车聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import CartItemNotFoundException, DomainValidationException
from domain.inventory.entity import StockItem


class CartStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONVERTED = "CONVERTED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CartItem:
    variant_id: int
    quantity: int
    id: Optional[int] = None
    cart_id: Optional[int] = None
    added_at: Optional[datetime] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException(
                f"数量必须大于0: {self.quantity}", field="quantity"
            )


@dataclass
class Cart:
    """
    购物车

    业务规则：
    1. user_id 与 anonymous_id 有且仅有一个
    2. 每个所有者同时最多一个 ACTIVE 购物车（由存储唯一约束兜底）
    3. 同一规格只占一行，重复加入累加数量
    4. 转为 CONVERTED 只发生一次
    """

    id: Optional[int]
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    status: CartStatus = CartStatus.ACTIVE
    currency: str = "EUR"
    items: List[CartItem] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if bool(self.user_id) == bool(self.anonymous_id):
            raise DomainValidationException(
                "购物车必须且只能属于一个用户或匿名访客", field="owner"
            )

    @classmethod
    def open(
        cls,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        currency: str = "EUR",
        anonymous_ttl: Optional[timedelta] = None,
    ) -> "Cart":
        now = _utcnow()
        expires_at = now + anonymous_ttl if anonymous_id and anonymous_ttl else None
        return cls(
            id=None,
            user_id=user_id,
            anonymous_id=anonymous_id,
            currency=currency,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_active(self) -> bool:
        return self.status == CartStatus.ACTIVE

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())

    def renew(self, ttl: Optional[timedelta], now: Optional[datetime] = None) -> None:
        """匿名购物车每次变更后顺延过期时间；登录用户购物车不过期"""
        if self.anonymous_id and ttl:
            self.expires_at = (now or _utcnow()) + ttl

    def owned_by(self,*, user_id: Optional[str], anonymous_id: Optional[str]) -> bool:
        if self.user_id:
            return self.user_id == user_id
        return self.anonymous_id is not None and self.anonymous_id == anonymous_id

    def find_item(self, variant_id: int) -> Optional[CartItem]:
        for item in self.items:
            if item.variant_id == variant_id:
                return item
        return None

    def add_item(self, variant_id: int, quantity: int) -> CartItem:
        if quantity < 1:
            raise DomainValidationException(f"数量必须大于0: {quantity}", field="quantity")
        existing = self.find_item(variant_id)
        if existing is not None:
            existing.quantity += quantity
            self._touch()
            return existing
        item = CartItem(variant_id=variant_id, quantity=quantity, cart_id=self.id, added_at=_utcnow())
        self.items.append(item)
        self._touch()
        return item

    def set_quantity(self, variant_id: int, quantity: int) -> int:
        """设置数量，返回与旧数量的差值（正数需要追加预留）"""
        item = self.find_item(variant_id)
        if item is None:
            raise CartItemNotFoundException(variant_id)
        if quantity < 1:
            raise DomainValidationException(f"数量必须大于0: {quantity}", field="quantity")
        delta = quantity - item.quantity
        item.quantity = quantity
        self._touch()
        return delta

    def remove_item(self, variant_id: int) -> CartItem:
        item = self.find_item(variant_id)
        if item is None:
            raise CartItemNotFoundException(variant_id)
        self.items.remove(item)
        self._touch()
        return item

    def clear(self) -> List[CartItem]:
        removed = self.items[:]
        self.items.clear()
        self._touch()
        return removed

    def mark_converted(self) -> None:
        if self.status == CartStatus.CONVERTED:
            raise DomainValidationException("购物车已转换", field="status")
        self.status = CartStatus.CONVERTED
        self._touch()

    def stock_items(self) -> List[StockItem]:
        return [StockItem(variant_id=i.variant_id, quantity=i.quantity) for i in self.items]

    def _touch(self) -> None:
        self.updated_at = _utcnow()
