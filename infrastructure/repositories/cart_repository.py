"""
购物车仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.cart.entity import Cart, CartItem, CartStatus
from domain.cart.repository import CartRepository
from infrastructure.models.cart import CartItemModel, CartModel
from infrastructure.repositories.base import ensure_utc, lock
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyCartRepository(CartRepository):
    """购物车仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CartModel) -> Cart:
        return Cart(
            id=model.id,
            user_id=model.user_id,
            anonymous_id=model.anonymous_id,
            status=CartStatus(model.status),
            currency=model.currency,
            items=[
                CartItem(
                    id=i.id,
                    cart_id=i.cart_id,
                    variant_id=i.variant_id,
                    quantity=i.quantity,
                    added_at=ensure_utc(i.added_at),
                )
                for i in model.items
            ],
            expires_at=ensure_utc(model.expires_at),
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )

    @staticmethod
    def _item_model(item: CartItem) -> CartItemModel:
        model = CartItemModel(variant_id=item.variant_id, quantity=item.quantity)
        if item.added_at is not None:
            model.added_at = item.added_at
        return model

    def _to_model(self, entity: Cart) -> CartModel:
        model = CartModel(
            user_id=entity.user_id,
            anonymous_id=entity.anonymous_id,
            status=entity.status.value,
            currency=entity.currency,
            expires_at=entity.expires_at,
            items=[self._item_model(i) for i in entity.items],
        )
        # 未设置的时间戳交给列默认值
        if entity.created_at is not None:
            model.created_at = entity.created_at
        if entity.updated_at is not None:
            model.updated_at = entity.updated_at
        return model

    async def _fetch(self, cart_id: int, *, for_update: bool = False) -> Optional[CartModel]:
        stmt = select(CartModel).where(CartModel.id == cart_id)
        result = await self.session.execute(lock(stmt, for_update))
        return result.scalar_one_or_none()

    async def get_by_id(self, cart_id: int, *, for_update: bool = False) -> Optional[Cart]:
        model = await self._fetch(cart_id, for_update=for_update)
        return self._to_entity(model) if model else None

    async def get_active(
        self,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        for_update: bool = False,
    ) -> Optional[Cart]:
        stmt = select(CartModel).where(CartModel.status == CartStatus.ACTIVE.value)
        if user_id:
            stmt = stmt.where(CartModel.user_id == user_id)
        elif anonymous_id:
            stmt = stmt.where(CartModel.anonymous_id == anonymous_id)
        else:
            return None
        result = await self.session.execute(lock(stmt, for_update))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, cart: Cart) -> Cart:
        model = self._to_model(cart)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "cart_created",
            cart_id=model.id,
            owner="user" if cart.user_id else "anonymous",
        )
        return self._to_entity(model)

    async def save(self, cart: Cart) -> Cart:
        model = await self._fetch(cart.id)
        if model is None:
            raise ValueError(f"Cart {cart.id} not found")

        model.status = cart.status.value
        model.currency = cart.currency
        model.expires_at = cart.expires_at
        if cart.updated_at is not None:
            model.updated_at = cart.updated_at

        # 同一规格复用原行，避免删除后重插触发 (cart_id, variant_id) 唯一约束
        wanted = {i.variant_id: i for i in cart.items}
        for item_model in list(model.items):
            item = wanted.pop(item_model.variant_id, None)
            if item is None:
                model.items.remove(item_model)
            else:
                item_model.quantity = item.quantity
        for item in wanted.values():
            model.items.append(self._item_model(item))

        await self.session.flush()
        await self.session.refresh(model, attribute_names=["items"])

        saved = self._to_entity(model)
        cart.items = saved.items
        return saved

    async def list_expired(self, *, now: datetime, limit: int = 100) -> List[Cart]:
        result = await self.session.execute(
            select(CartModel)
            .where(
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.expires_at.is_not(None),
                CartModel.expires_at <= now,
                CartModel.items.any(),
            )
            .order_by(CartModel.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
