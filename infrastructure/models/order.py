"""
订单数据库模型 - 订单、明细、支付、状态历史、订单号序列
注意：这是基础设施层的实现细节，所有业务规则在 domain.order 中
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(32), unique=True, nullable=False, comment="订单号 ORD-YYYY-NNNNNN")

    user_id = Column(String(64), nullable=True, index=True, comment="用户ID")
    anonymous_id = Column(String(64), nullable=True, index=True, comment="匿名访客ID")
    order_email = Column(String(255), nullable=True, comment="通知邮箱")
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="SET NULL"), nullable=True)

    status = Column(String(32), nullable=False, default="PAID", index=True, comment="订单状态")
    currency = Column(String(3), nullable=False, comment="货币代码")

    # 金额（Numeric 精确存储）
    subtotal_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="小计")
    tax_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="税费")
    shipping_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="运费")
    discount_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="折扣")
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="总额")

    shipping_address = Column(JSON, nullable=True, comment="收货地址快照")
    language = Column(String(10), nullable=False, default="en", comment="通知语言")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    items = relationship(
        "OrderItemModel", lazy="selectin", cascade="all, delete-orphan", order_by="OrderItemModel.id"
    )
    payments = relationship(
        "PaymentModel", lazy="selectin", cascade="all, delete-orphan", order_by="PaymentModel.id"
    )
    status_history = relationship(
        "OrderStatusHistoryModel",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistoryModel.id",
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_number='{self.order_number}', "
            f"status='{self.status}', total={self.total_amount})>"
        )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Integer, nullable=False, comment="规格ID（快照，不做外键）")
    product_id = Column(Integer, nullable=False)
    sku = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(precision=15, scale=4), nullable=False, comment="下单时单价")
    line_total = Column(Numeric(precision=15, scale=2), nullable=False, comment="行金额")
    currency = Column(String(3), nullable=False)
    product_snapshot = Column(JSON, nullable=True, comment="商品快照")


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False)
    method = Column(String(32), nullable=False, default="STRIPE", comment="支付方式")
    external_id = Column(String(255), nullable=False, unique=True, comment="网关交易ID")
    status = Column(String(20), nullable=False, default="COMPLETED", comment="COMPLETED/FAILED/REFUNDED")
    transaction_data = Column(JSON, nullable=True, comment="网关数据快照")
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class OrderStatusHistoryModel(Base):
    """状态历史（只追加）"""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(32), nullable=False)
    comment = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=False, comment="操作方")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )


class OrderSequenceModel(Base):
    """年度订单号计数器"""
    __tablename__ = "order_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)
