"""Application-level handling of collected domain events (after commit)."""
from __future__ import annotations

from dataclasses import asdict
from typing import Iterable

from domain.inventory.entity import InventoryRecordMissing, LowStockReached, UnreservedConsumption
from domain.order.events import OrderPlaced, OrderStatusChanged, PaidAmountMismatch

# event type -> (log level, event name)
_EVENT_LOGS = {
    OrderPlaced: ("info", "order_created"),
    OrderStatusChanged: ("info", "order_status_changed"),
    PaidAmountMismatch: ("warning", "order_paid_amount_mismatch"),
    LowStockReached: ("warning", "inventory_low_stock"),
    InventoryRecordMissing: ("warning", "inventory_record_missing"),
    UnreservedConsumption: ("warning", "inventory_unreserved_consumption"),
}


def log_domain_events(logger, events: Iterable, **context) -> None:
    for event in events:
        level, name = _EVENT_LOGS.get(type(event), ("info", type(event).__name__))
        fields = {k: (str(v) if v is not None else None) for k, v in asdict(event).items()}
        getattr(logger, level)(name, **fields, **context)
