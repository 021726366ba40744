"""
订单领域实体 - 订单聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException
from domain.cart.calculation import round_half_even
from domain.inventory.entity import StockItem


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PAID = "PAID"                          # 已支付（初始状态）
    SHIPPED = "SHIPPED"                    # 已发货
    IN_TRANSIT = "IN_TRANSIT"              # 运输中
    DELIVERED = "DELIVERED"                # 已签收
    REFUND_REQUESTED = "REFUND_REQUESTED"  # 申请退款
    REFUNDED = "REFUNDED"                  # 已退款（终态）
    CANCELLED = "CANCELLED"                # 已取消（终态）


class PaymentStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Actor(str, Enum):
    """状态变更发起方"""
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_order_number(year: int, sequence: int) -> str:
    """ORD-2025-000001"""
    return f"ORD-{year}-{sequence:06d}"


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal

    @classmethod
    def compute(
        cls,
        subtotal: Decimal,
        *,
        tax: Decimal = Decimal("0"),
        shipping: Decimal = Decimal("0"),
        discount: Decimal = Decimal("0"),
    ) -> "OrderTotals":
        """total = subtotal + tax + shipping - discount（两位小数，银行家舍入）"""
        subtotal = round_half_even(subtotal)
        tax = round_half_even(tax)
        shipping = round_half_even(shipping)
        discount = round_half_even(discount)
        return cls(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            discount=discount,
            total=round_half_even(subtotal + tax + shipping - discount),
        )


@dataclass
class OrderItem:
    """下单时的商品与价格快照，创建后不可变"""
    variant_id: int
    product_id: int
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    currency: str
    product_snapshot: dict = field(default_factory=dict)
    id: Optional[int] = None


@dataclass
class Payment:
    amount: Decimal
    currency: str
    method: str
    external_id: str  # 网关交易ID（唯一）
    status: PaymentStatus = PaymentStatus.COMPLETED
    transaction_data: dict = field(default_factory=dict)
    processed_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class StatusHistoryEntry:
    """审计轨迹，只追加"""
    status: OrderStatus
    comment: Optional[str]
    created_by: str
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. total = subtotal + tax + shipping - discount
    2. 每个网关交易最多对应一个订单
    3. 状态只能按状态机前进或进入终态
    4. 每次状态变更都追加历史记录
    """

    id: Optional[int]
    order_number: str
    status: OrderStatus
    currency: str
    subtotal_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    order_email: Optional[str] = None
    shipping_address: Optional[dict] = None
    language: str = "en"
    cart_id: Optional[int] = None
    items: List[OrderItem] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self._validate_totals()

    def _validate_totals(self) -> None:
        expected = round_half_even(
            self.subtotal_amount + self.tax_amount + self.shipping_amount - self.discount_amount
        )
        if round_half_even(self.total_amount) != expected:
            raise DomainValidationException(
                f"订单总额不一致: {self.total_amount} != {expected}",
                field="total_amount",
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED)

    def owned_by(self, *, user_id: Optional[str], anonymous_id: Optional[str]) -> bool:
        if self.user_id:
            return self.user_id == user_id
        return self.anonymous_id is not None and self.anonymous_id == anonymous_id

    def completed_payment(self) -> Optional[Payment]:
        for payment in self.payments:
            if payment.status == PaymentStatus.COMPLETED:
                return payment
        return None

    def refundable_payment(self) -> Optional[Payment]:
        """最近一笔已完成或已退款的支付（补偿需要其外部交易ID）"""
        for payment in reversed(self.payments):
            if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
                return payment
        return None

    def stock_items(self) -> List[StockItem]:
        return [StockItem(variant_id=i.variant_id, quantity=i.quantity) for i in self.items]

    def record_status(self, status: OrderStatus, *, comment: Optional[str], actor: str) -> StatusHistoryEntry:
        """设置状态并追加历史（合法性由状态机先行校验）"""
        self.status = status
        self.updated_at = _utcnow()
        entry = StatusHistoryEntry(status=status, comment=comment, created_by=actor, created_at=self.updated_at)
        self.status_history.append(entry)
        return entry

    def mark_payments_refunded(self) -> None:
        for payment in self.payments:
            if payment.status == PaymentStatus.COMPLETED:
                payment.status = PaymentStatus.REFUNDED
