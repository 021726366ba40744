"""
库存仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.inventory.entity import InventoryRecord
from domain.inventory.repository import InventoryRepository
from infrastructure.models.catalog import InventoryRecordModel
from infrastructure.repositories.base import ensure_utc, lock


def inventory_to_entity(model: InventoryRecordModel) -> InventoryRecord:
    """将数据库模型转换为领域实体（目录仓储复用）"""
    return InventoryRecord(
        id=model.id,
        variant_id=model.variant_id,
        stock=model.stock,
        reserved_stock=model.reserved_stock,
        track_inventory=bool(model.track_inventory),
        allow_backorder=bool(model.allow_backorder),
        low_stock_threshold=model.low_stock_threshold,
        updated_at=ensure_utc(model.updated_at),
    )


class SQLAlchemyInventoryRepository(InventoryRepository):
    """库存仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fetch(self, variant_id: int, *, for_update: bool = False) -> Optional[InventoryRecordModel]:
        stmt = select(InventoryRecordModel).where(InventoryRecordModel.variant_id == variant_id)
        result = await self.session.execute(lock(stmt, for_update))
        return result.scalar_one_or_none()

    async def get_by_variant(self, variant_id: int, *, for_update: bool = False) -> Optional[InventoryRecord]:
        model = await self._fetch(variant_id, for_update=for_update)
        return inventory_to_entity(model) if model else None

    async def get_many(self, variant_ids: Iterable[int], *, for_update: bool = False) -> Dict[int, InventoryRecord]:
        ids = sorted(set(variant_ids))
        if not ids:
            return {}
        # 固定加锁顺序，避免并发结账死锁
        stmt = (
            select(InventoryRecordModel)
            .where(InventoryRecordModel.variant_id.in_(ids))
            .order_by(InventoryRecordModel.variant_id.asc())
        )
        result = await self.session.execute(lock(stmt, for_update))
        return {m.variant_id: inventory_to_entity(m) for m in result.scalars().all()}

    async def update(self, record: InventoryRecord) -> InventoryRecord:
        model = await self._fetch(record.variant_id)
        if model is None:
            raise ValueError(f"Inventory record for variant {record.variant_id} not found")

        model.stock = record.stock
        model.reserved_stock = record.reserved_stock
        model.track_inventory = record.track_inventory
        model.allow_backorder = record.allow_backorder
        model.low_stock_threshold = record.low_stock_threshold

        await self.session.flush()
        return inventory_to_entity(model)
