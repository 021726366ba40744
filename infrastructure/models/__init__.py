"""Infrastructure models package exports."""
from .base import Base, metadata
from .inbound_event import InboundEventModel
from .catalog import ProductVariantModel, VariantPriceModel, InventoryRecordModel
from .cart import CartModel, CartItemModel
from .order import (
    OrderModel,
    OrderItemModel,
    PaymentModel,
    OrderStatusHistoryModel,
    OrderSequenceModel,
)

__all__ = [
    "Base",
    "metadata",
    "InboundEventModel",
    "ProductVariantModel",
    "VariantPriceModel",
    "InventoryRecordModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderItemModel",
    "PaymentModel",
    "OrderStatusHistoryModel",
    "OrderSequenceModel",
]
