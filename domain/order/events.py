"""
Order domain events.

Collected by the domain services and handled by the application layer
after the unit of work commits (logging, notifications).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


@dataclass
class OrderEvent:
    order_number: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderPlaced(OrderEvent):
    total_amount: Decimal = Decimal("0")
    currency: str = ""
    payment_external_id: str = ""


@dataclass
class PaidAmountMismatch(OrderEvent):
    calculated_total: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")


@dataclass
class OrderStatusChanged(OrderEvent):
    previous: str = ""
    current: str = ""
    actor: str = ""
    comment: Optional[str] = None
