"""
订单领域服务 - 由购物车生成订单、执行状态转换的数据部分
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from domain.cart.calculation import calculate_cart, validate_cart_for_checkout
from domain.cart.entity import Cart
from domain.cart.repository import CartRepository
from domain.catalog.repository import CatalogRepository
from domain.common.exceptions import CheckoutValidationException
from domain.inventory.service import InventoryReservationManager
from .entity import (
    Actor,
    Order,
    OrderItem,
    OrderStatus,
    OrderTotals,
    Payment,
    PaymentStatus,
)
from .events import OrderPlaced, OrderStatusChanged, PaidAmountMismatch
from .repository import OrderRepository
from .state_machine import TransitionCheck


# 网关实收金额与计算总额的容差
AMOUNT_TOLERANCE = Decimal("0.01")


@dataclass
class CapturedPayment:
    """网关已确认捕获的支付"""
    external_id: str
    amount: Decimal
    currency: str
    method: str = "STRIPE"
    email: Optional[str] = None
    shipping_address: Optional[dict] = None
    shipping_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    language: str = "en"
    transaction_data: dict = field(default_factory=dict)


class OrderDomainService:
    """订单创建与状态转换（不含网关调用与通知）"""

    def __init__(
        self,
        orders: OrderRepository,
        carts: CartRepository,
        catalog: CatalogRepository,
        inventory: InventoryReservationManager,
    ):
        self.orders = orders
        self.carts = carts
        self.catalog = catalog
        self.inventory = inventory
        self.events: List = []

    async def create_from_cart(self, cart: Cart, payment: CapturedPayment) -> Order:
        """下单的汇合点：重新校验 -> 计价 -> 扣减库存 -> 落库订单 -> 购物车转换。

        须在同一工作单元内调用；任一步失败整体回滚。
        """
        currency = payment.currency.upper()
        variants = await self.catalog.get_variants([i.variant_id for i in cart.items])

        validation = validate_cart_for_checkout(cart, variants, currency)
        if not validation.valid:
            raise CheckoutValidationException(validation.errors)

        calculation = calculate_cart(cart, variants, currency)
        totals = OrderTotals.compute(
            calculation.subtotal,
            tax=payment.tax_amount,
            shipping=payment.shipping_amount,
        )

        await self.inventory.decrement(cart.stock_items())

        now = datetime.now(timezone.utc)
        order_number = await self.orders.next_order_number(now.year)

        if abs(totals.total - payment.amount) > AMOUNT_TOLERANCE:
            self.events.append(
                PaidAmountMismatch(
                    order_number=order_number,
                    calculated_total=totals.total,
                    paid_amount=payment.amount,
                )
            )

        order = Order(
            id=None,
            order_number=order_number,
            status=OrderStatus.PAID,
            currency=currency,
            subtotal_amount=totals.subtotal,
            tax_amount=totals.tax,
            shipping_amount=totals.shipping,
            discount_amount=totals.discount,
            total_amount=totals.total,
            user_id=cart.user_id,
            anonymous_id=cart.anonymous_id,
            order_email=payment.email,
            shipping_address=payment.shipping_address,
            language=payment.language,
            cart_id=cart.id,
            items=[
                OrderItem(
                    variant_id=line.variant_id,
                    product_id=variants[line.variant_id].product_id,
                    sku=line.sku,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                    currency=currency,
                    product_snapshot=variants[line.variant_id].snapshot(),
                )
                for line in calculation.items
            ],
            payments=[
                Payment(
                    amount=payment.amount,
                    currency=currency,
                    method=payment.method,
                    external_id=payment.external_id,
                    status=PaymentStatus.COMPLETED,
                    transaction_data=payment.transaction_data,
                    processed_at=now,
                )
            ],
            created_at=now,
            updated_at=now,
        )
        order.record_status(
            OrderStatus.PAID,
            comment=f"Payment {payment.external_id} captured",
            actor=Actor.SYSTEM.value,
        )
        created = await self.orders.create(order)

        cart.mark_converted()
        await self.carts.save(cart)

        self.events.append(
            OrderPlaced(
                order_number=created.order_number,
                total_amount=created.total_amount,
                currency=created.currency,
                payment_external_id=payment.external_id,
            )
        )
        return created

    async def apply_transition(
        self,
        order: Order,
        check: TransitionCheck,
        *,
        actor: Actor,
        comment: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Order:
        """执行已通过守卫（且已完成网关补偿）的状态转换"""
        previous = order.status
        if check.requires_compensation:
            order.mark_payments_refunded()
            await self.inventory.increment(order.stock_items())
        order.record_status(check.target, comment=comment, actor=created_by or actor.value)
        updated = await self.orders.update(order)
        self.events.append(
            OrderStatusChanged(
                order_number=order.order_number,
                previous=previous.value,
                current=check.target.value,
                actor=actor.value,
                comment=comment,
            )
        )
        return updated

    def get_domain_events(self) -> List:
        """获取并清空领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
