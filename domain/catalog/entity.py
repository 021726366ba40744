"""
商品目录读模型 - 规格、价格与库存快照
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from domain.inventory.entity import InventoryRecord


@dataclass
class VariantPrice:
    currency: str  # ISO-4217
    amount: Decimal
    is_active: bool = True


@dataclass
class ProductVariant:
    """可售规格；价格按币种分别维护，不做跨币种换算"""

    id: int
    product_id: int
    sku: str
    product_name: str
    variant_name: Optional[str] = None
    product_slug: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    prices: List[VariantPrice] = field(default_factory=list)
    inventory: Optional[InventoryRecord] = None

    @property
    def display_name(self) -> str:
        if self.variant_name:
            return f"{self.product_name} - {self.variant_name}"
        return self.product_name

    def snapshot(self) -> dict:
        """订单行使用的不可变商品快照"""
        return {
            "variant_id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.display_name,
            "slug": self.product_slug,
            "image_url": self.image_url,
        }
