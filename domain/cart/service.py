"""
购物车领域服务 - 明细变更与库存预留保持一致
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from domain.common.exceptions import (
    CartNotFoundException,
    UnauthorizedException,
    VariantNotFoundException,
)
from domain.catalog.repository import CatalogRepository
from domain.inventory.entity import StockItem
from domain.inventory.service import InventoryReservationManager
from .entity import Cart, CartItem
from .repository import CartRepository


class CartDomainService:
    """购物车明细变更：每次增量预留、减量释放，失败时购物车不变"""

    def __init__(
        self,
        carts: CartRepository,
        catalog: CatalogRepository,
        inventory: InventoryReservationManager,
        *,
        default_currency: str = "EUR",
        anonymous_ttl: Optional[timedelta] = None,
    ):
        self.carts = carts
        self.catalog = catalog
        self.inventory = inventory
        self.default_currency = default_currency
        self.anonymous_ttl = anonymous_ttl

    async def get_or_create(
        self,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        for_update: bool = False,
    ) -> Cart:
        if not user_id and not anonymous_id:
            raise UnauthorizedException("User ID or anonymous ID required")
        # 已登录用户以 user_id 为准
        if user_id:
            anonymous_id = None
        cart = await self.carts.get_active(user_id=user_id, anonymous_id=anonymous_id, for_update=for_update)
        if cart is not None:
            return cart
        cart = Cart.open(
            user_id=user_id,
            anonymous_id=anonymous_id,
            currency=self.default_currency,
            anonymous_ttl=self.anonymous_ttl,
        )
        return await self.carts.create(cart)

    async def add_item(self, cart: Cart, variant_id: int, quantity: int) -> CartItem:
        variant = await self.catalog.get_variant(variant_id)
        if variant is None or not variant.is_active:
            raise VariantNotFoundException(variant_id)
        await self.inventory.reserve([StockItem(variant_id=variant_id, quantity=quantity)])
        item = cart.add_item(variant_id, quantity)
        cart.renew(self.anonymous_ttl)
        await self.carts.save(cart)
        return item

    async def update_item(self, cart: Cart, variant_id: int, quantity: int) -> CartItem:
        existing = cart.find_item(variant_id)
        current = existing.quantity if existing else 0
        delta = quantity - current
        if existing is not None and delta > 0:
            await self.inventory.reserve([StockItem(variant_id=variant_id, quantity=delta)])
        cart.set_quantity(variant_id, quantity)
        cart.renew(self.anonymous_ttl)
        if delta < 0:
            await self.inventory.release([StockItem(variant_id=variant_id, quantity=-delta)])
        await self.carts.save(cart)
        return cart.find_item(variant_id)

    async def remove_item(self, cart: Cart, variant_id: int) -> CartItem:
        item = cart.remove_item(variant_id)
        cart.renew(self.anonymous_ttl)
        await self.inventory.release([StockItem(variant_id=variant_id, quantity=item.quantity)])
        await self.carts.save(cart)
        return item

    async def clear(self, cart: Cart) -> List[CartItem]:
        removed = cart.clear()
        if removed:
            await self.inventory.release(
                [StockItem(variant_id=i.variant_id, quantity=i.quantity) for i in removed]
            )
        await self.carts.save(cart)
        return removed

    async def merge_anonymous_into_user(self, anonymous_id: str, user_id: str) -> Optional[Cart]:
        """登录后合并匿名购物车：数量累加，不允许超卖时按实物库存封顶。

        匿名购物车的预留随明细一起转入用户购物车；封顶截掉的数量释放预留。
        """
        anonymous_cart = await self.carts.get_active(anonymous_id=anonymous_id, for_update=True)
        if anonymous_cart is None or anonymous_cart.is_empty:
            return None
        user_cart = await self.get_or_create(user_id=user_id, for_update=True)

        variants = await self.catalog.get_variants(
            {i.variant_id for i in anonymous_cart.items} | {i.variant_id for i in user_cart.items}
        )
        to_release: List[StockItem] = []
        for anon_item in anonymous_cart.items:
            variant = variants.get(anon_item.variant_id)
            if variant is None or not variant.is_active:
                to_release.append(StockItem(variant_id=anon_item.variant_id, quantity=anon_item.quantity))
                continue
            existing = user_cart.find_item(anon_item.variant_id)
            current = existing.quantity if existing else 0
            wanted = current + anon_item.quantity
            inventory = variant.inventory
            if inventory is not None and inventory.track_inventory and not inventory.allow_backorder:
                wanted = min(wanted, max(inventory.stock, current))
            added = wanted - current
            if added > 0:
                user_cart.add_item(anon_item.variant_id, added)
            if added < anon_item.quantity:
                to_release.append(
                    StockItem(variant_id=anon_item.variant_id, quantity=anon_item.quantity - added)
                )

        if to_release:
            await self.inventory.release(to_release)
        anonymous_cart.mark_converted()
        await self.carts.save(anonymous_cart)
        return await self.carts.save(user_cart)

    async def clean_invalid_items(self, cart: Cart) -> List[int]:
        """移除已下架或库存不足（且不允许超卖）的行，返回被移除的 variant_id"""
        variants = await self.catalog.get_variants([i.variant_id for i in cart.items])
        removed: List[int] = []
        for item in list(cart.items):
            variant = variants.get(item.variant_id)
            inventory = variant.inventory if variant else None
            invalid = (
                variant is None
                or not variant.is_active
                or inventory is None
                or not inventory.can_fulfil(item.quantity)
            )
            if invalid:
                await self.remove_item(cart, item.variant_id)
                removed.append(item.variant_id)
        return removed

    async def release_expired(self, *, now: Optional[datetime] = None, limit: int = 100) -> int:
        """释放过期购物车的预留并清空明细，返回处理的购物车数"""
        now = now or datetime.now(timezone.utc)
        expired = await self.carts.list_expired(now=now, limit=limit)
        for cart in expired:
            await self.clear(cart)
        return len(expired)

    async def require(self, cart_id: int, *, for_update: bool = False) -> Cart:
        cart = await self.carts.get_by_id(cart_id, for_update=for_update)
        if cart is None:
            raise CartNotFoundException(cart_id)
        return cart
