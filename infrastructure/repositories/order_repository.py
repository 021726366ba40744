"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from domain.order.entity import (
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    StatusHistoryEntry,
    format_order_number,
)
from domain.order.repository import OrderRepository
from infrastructure.models.order import (
    OrderItemModel,
    OrderModel,
    OrderSequenceModel,
    OrderStatusHistoryModel,
    PaymentModel,
)
from infrastructure.repositories.base import dialect_name, ensure_utc, lock, to_decimal
from core.logging_config import get_logger


logger = get_logger(__name__)

_UPSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_number=model.order_number,
            status=OrderStatus(model.status),
            currency=model.currency,
            subtotal_amount=to_decimal(model.subtotal_amount),
            tax_amount=to_decimal(model.tax_amount),
            shipping_amount=to_decimal(model.shipping_amount),
            discount_amount=to_decimal(model.discount_amount),
            total_amount=to_decimal(model.total_amount),
            user_id=model.user_id,
            anonymous_id=model.anonymous_id,
            order_email=model.order_email,
            shipping_address=model.shipping_address,
            language=model.language,
            cart_id=model.cart_id,
            items=[
                OrderItem(
                    id=i.id,
                    variant_id=i.variant_id,
                    product_id=i.product_id,
                    sku=i.sku,
                    name=i.name,
                    quantity=i.quantity,
                    unit_price=to_decimal(i.unit_price),
                    line_total=to_decimal(i.line_total),
                    currency=i.currency,
                    product_snapshot=i.product_snapshot or {},
                )
                for i in model.items
            ],
            payments=[
                Payment(
                    id=p.id,
                    amount=to_decimal(p.amount),
                    currency=p.currency,
                    method=p.method,
                    external_id=p.external_id,
                    status=PaymentStatus(p.status),
                    transaction_data=p.transaction_data or {},
                    processed_at=ensure_utc(p.processed_at),
                )
                for p in model.payments
            ],
            status_history=[
                StatusHistoryEntry(
                    id=h.id,
                    status=OrderStatus(h.status),
                    comment=h.comment,
                    created_by=h.created_by,
                    created_at=ensure_utc(h.created_at),
                )
                for h in model.status_history
            ],
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )

    @staticmethod
    def _history_model(entry: StatusHistoryEntry) -> OrderStatusHistoryModel:
        return OrderStatusHistoryModel(
            status=entry.status.value,
            comment=entry.comment,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        model = OrderModel(
            order_number=entity.order_number,
            status=entity.status.value,
            currency=entity.currency,
            subtotal_amount=entity.subtotal_amount,
            tax_amount=entity.tax_amount,
            shipping_amount=entity.shipping_amount,
            discount_amount=entity.discount_amount,
            total_amount=entity.total_amount,
            user_id=entity.user_id,
            anonymous_id=entity.anonymous_id,
            order_email=entity.order_email,
            shipping_address=entity.shipping_address,
            language=entity.language,
            cart_id=entity.cart_id,
            items=[
                OrderItemModel(
                    variant_id=i.variant_id,
                    product_id=i.product_id,
                    sku=i.sku,
                    name=i.name,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    line_total=i.line_total,
                    currency=i.currency,
                    product_snapshot=i.product_snapshot,
                )
                for i in entity.items
            ],
            payments=[
                PaymentModel(
                    amount=p.amount,
                    currency=p.currency,
                    method=p.method,
                    external_id=p.external_id,
                    status=p.status.value,
                    transaction_data=p.transaction_data,
                    processed_at=p.processed_at,
                )
                for p in entity.payments
            ],
            status_history=[self._history_model(h) for h in entity.status_history],
        )
        if entity.created_at is not None:
            model.created_at = entity.created_at
        return model

    async def _fetch(self, order_number: str, *, for_update: bool = False) -> Optional[OrderModel]:
        stmt = select(OrderModel).where(OrderModel.order_number == order_number)
        result = await self.session.execute(lock(stmt, for_update))
        return result.scalar_one_or_none()

    async def next_order_number(self, year: int) -> str:
        """年度计数行 upsert 自增；行锁持有到事务结束，序号不会重复"""
        insert_fn = _UPSERTS.get(dialect_name(self.session))
        if insert_fn is not None:
            stmt = insert_fn(OrderSequenceModel).values(year=year, last_value=1)
            stmt = stmt.on_conflict_do_update(
                index_elements=["year"],
                set_={"last_value": OrderSequenceModel.last_value + 1},
            ).returning(OrderSequenceModel.last_value)
            result = await self.session.execute(stmt)
            sequence = result.scalar_one()
        else:
            result = await self.session.execute(
                select(OrderSequenceModel).where(OrderSequenceModel.year == year).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = OrderSequenceModel(year=year, last_value=0)
                self.session.add(row)
            row.last_value += 1
            await self.session.flush()
            sequence = row.last_value
        return format_order_number(year, sequence)

    async def create(self, order: Order) -> Order:
        model = self._to_model(order)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model, attribute_names=["items", "payments", "status_history"])
        logger.info(
            "order_persisted",
            order_number=model.order_number,
            order_id=model.id,
        )
        return self._to_entity(model)

    async def get_by_number(self, order_number: str, *, for_update: bool = False) -> Optional[Order]:
        model = await self._fetch(order_number, for_update=for_update)
        return self._to_entity(model) if model else None

    async def get_by_payment_external_id(self, external_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .join(PaymentModel, PaymentModel.order_id == OrderModel.id)
            .where(PaymentModel.external_id == external_id)
        )
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def update(self, order: Order) -> Order:
        model = await self._fetch(order.order_number)
        if model is None:
            raise ValueError(f"Order {order.order_number} not found")

        model.status = order.status.value
        model.order_email = order.order_email
        if order.updated_at is not None:
            model.updated_at = order.updated_at

        payments_by_id = {p.id: p for p in order.payments if p.id is not None}
        for payment_model in model.payments:
            payment = payments_by_id.get(payment_model.id)
            if payment is not None:
                payment_model.status = payment.status.value

        # 状态历史只追加
        for entry in order.status_history:
            if entry.id is None:
                model.status_history.append(self._history_model(entry))

        await self.session.flush()
        await self.session.refresh(model, attribute_names=["payments", "status_history"])
        saved = self._to_entity(model)
        order.status_history = saved.status_history
        return saved
