"""
库存仓储接口
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .entity import InventoryRecord


class InventoryRepository(ABC):

    @abstractmethod
    async def get_by_variant(self, variant_id: int, *, for_update: bool = False) -> Optional[InventoryRecord]:
        """获取单个规格的库存"""
        pass

    @abstractmethod
    async def get_many(self, variant_ids: Iterable[int], *, for_update: bool = False) -> Dict[int, InventoryRecord]:
        """批量获取库存；for_update=True 时按 variant_id 升序加行锁"""
        pass

    @abstractmethod
    async def update(self, record: InventoryRecord) -> InventoryRecord:
        pass
