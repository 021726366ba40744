"""
商品目录仓储实现（只读）
"""
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import ProductVariant, VariantPrice
from domain.catalog.repository import CatalogRepository
from infrastructure.models.catalog import ProductVariantModel
from infrastructure.repositories.base import to_decimal
from infrastructure.repositories.inventory_repository import inventory_to_entity


class SQLAlchemyCatalogRepository(CatalogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductVariantModel) -> ProductVariant:
        return ProductVariant(
            id=model.id,
            product_id=model.product_id,
            sku=model.sku,
            product_name=model.product_name,
            variant_name=model.variant_name,
            product_slug=model.product_slug,
            image_url=model.image_url,
            is_active=bool(model.is_active),
            prices=[
                VariantPrice(currency=p.currency, amount=to_decimal(p.amount), is_active=bool(p.is_active))
                for p in model.prices
            ],
            inventory=inventory_to_entity(model.inventory) if model.inventory is not None else None,
        )

    async def get_variant(self, variant_id: int) -> Optional[ProductVariant]:
        result = await self.session.execute(
            select(ProductVariantModel).where(ProductVariantModel.id == variant_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_variants(self, variant_ids: Iterable[int]) -> Dict[int, ProductVariant]:
        ids = set(variant_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(ProductVariantModel).where(ProductVariantModel.id.in_(ids))
        )
        return {m.id: self._to_entity(m) for m in result.scalars().all()}
