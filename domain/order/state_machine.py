"""
订单状态机

合法转换以 (当前状态, 目标状态) 表的形式定义，避免在各调用点散落字符串比较。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from domain.common.exceptions import IllegalStateTransitionException
from .entity import Actor, OrderStatus


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    # 承运商可能跳过运输中扫描
    OrderStatus.SHIPPED: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUND_REQUESTED}),
    OrderStatus.REFUND_REQUESTED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# 顾客只能发起的转换
CUSTOMER_TRANSITIONS: FrozenSet[Tuple[OrderStatus, OrderStatus]] = frozenset({
    (OrderStatus.PAID, OrderStatus.CANCELLED),
    (OrderStatus.DELIVERED, OrderStatus.REFUND_REQUESTED),
})

# 进入这些状态前必须先在网关退款
COMPENSATING_STATES: FrozenSet[OrderStatus] = frozenset({OrderStatus.REFUNDED, OrderStatus.CANCELLED})

# 进入这些状态后发送通知
NOTIFY_STATES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.SHIPPED,
    OrderStatus.REFUNDED,
    OrderStatus.CANCELLED,
})


@dataclass(frozen=True)
class TransitionCheck:
    current: OrderStatus
    target: OrderStatus
    allowed: bool
    reason: Optional[str] = None
    requires_compensation: bool = False
    notify: bool = False


class OrderStateMachine:
    """纯函数式的守卫判定，不做任何 I/O"""

    @staticmethod
    def check(current: OrderStatus, target: OrderStatus, actor: Actor = Actor.ADMIN) -> TransitionCheck:
        if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            if current in (OrderStatus.REFUNDED, OrderStatus.CANCELLED):
                reason = f"Order is already {current.value}"
            else:
                reason = f"Cannot transition order from {current.value} to {target.value}"
            return TransitionCheck(current, target, allowed=False, reason=reason)

        if actor == Actor.CUSTOMER and (current, target) not in CUSTOMER_TRANSITIONS:
            if target == OrderStatus.CANCELLED:
                reason = "Order can only be cancelled before it ships; request a refund instead"
            elif target == OrderStatus.REFUND_REQUESTED:
                reason = "Refunds can only be requested after delivery"
            else:
                reason = f"Customers cannot move an order to {target.value}"
            return TransitionCheck(current, target, allowed=False, reason=reason)

        return TransitionCheck(
            current,
            target,
            allowed=True,
            requires_compensation=target in COMPENSATING_STATES,
            notify=target in NOTIFY_STATES,
        )

    @classmethod
    def ensure(cls, current: OrderStatus, target: OrderStatus, actor: Actor = Actor.ADMIN) -> TransitionCheck:
        result = cls.check(current, target, actor)
        if not result.allowed:
            raise IllegalStateTransitionException(current.value, target.value, result.reason)
        return result
