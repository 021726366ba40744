"""
购物车数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=True, index=True, comment="登录用户ID")
    anonymous_id = Column(String(64), nullable=True, index=True, comment="匿名访客ID")
    status = Column(String(20), nullable=False, default="ACTIVE", comment="状态: ACTIVE/CONVERTED")
    currency = Column(String(3), nullable=False, default="EUR", comment="货币代码")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="过期时间（匿名购物车）")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="CartItemModel.id",
    )

    __table_args__ = (
        # 每个所有者最多一个 ACTIVE 购物车
        Index(
            "uq_carts_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE' AND user_id IS NOT NULL"),
            sqlite_where=text("status = 'ACTIVE' AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_carts_active_anonymous",
            "anonymous_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE' AND anonymous_id IS NOT NULL"),
            sqlite_where=text("status = 'ACTIVE' AND anonymous_id IS NOT NULL"),
        ),
        Index("ix_carts_status_expires", "status", "expires_at"),
    )


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, comment="数量")
    added_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    cart = relationship("CartModel", back_populates="items")

    __table_args__ = (
        UniqueConstraint("cart_id", "variant_id", name="uq_cart_items_cart_variant"),
    )
