"""
商品规格、价格与库存数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, CheckConstraint,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class ProductVariantModel(Base):
    """商品规格（商品本身的管理不在本服务范围内，仅保存快照所需字段）"""
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False, index=True, comment="商品ID")
    product_name = Column(String(255), nullable=False, comment="商品名称")
    product_slug = Column(String(255), nullable=True, comment="商品 slug")
    variant_name = Column(String(255), nullable=True, comment="规格名称")
    sku = Column(String(100), nullable=False, unique=True, comment="SKU")
    image_url = Column(String(1024), nullable=True, comment="主图")
    is_active = Column(Boolean, nullable=False, default=True, comment="是否上架")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    prices = relationship(
        "VariantPriceModel",
        back_populates="variant",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    inventory = relationship(
        "InventoryRecordModel",
        back_populates="variant",
        lazy="selectin",
        uselist=False,
    )


class VariantPriceModel(Base):
    """规格在各币种下的售价"""
    __tablename__ = "variant_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(
        Integer,
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")
    amount = Column(Numeric(precision=15, scale=4), nullable=False, comment="单价")
    is_active = Column(Boolean, nullable=False, default=True)

    variant = relationship("ProductVariantModel", back_populates="prices")

    __table_args__ = (
        UniqueConstraint("variant_id", "currency", name="uq_variant_prices_variant_currency"),
    )


class InventoryRecordModel(Base):
    """库存账：stock 为实物库存，reserved_stock 为购物车/结账中的软占用"""
    __tablename__ = "inventory_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(
        Integer,
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    stock = Column(Integer, nullable=False, default=0, comment="实物库存")
    reserved_stock = Column(Integer, nullable=False, default=0, comment="已预留")
    track_inventory = Column(Boolean, nullable=False, default=True, comment="是否跟踪库存")
    allow_backorder = Column(Boolean, nullable=False, default=False, comment="是否允许超卖")
    low_stock_threshold = Column(Integer, nullable=True, comment="低库存阈值")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    variant = relationship("ProductVariantModel", back_populates="inventory")

    __table_args__ = (
        CheckConstraint("reserved_stock >= 0", name="ck_inventory_records_reserved_non_negative"),
    )

    def __repr__(self):
        return (
            f"<InventoryRecordModel(variant_id={self.variant_id}, stock={self.stock}, "
            f"reserved_stock={self.reserved_stock})>"
        )
