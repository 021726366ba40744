"""
商品目录仓储接口（只读）
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .entity import ProductVariant


class CatalogRepository(ABC):

    @abstractmethod
    async def get_variant(self, variant_id: int) -> Optional[ProductVariant]:
        """获取规格（含价格与库存）"""
        pass

    @abstractmethod
    async def get_variants(self, variant_ids: Iterable[int]) -> Dict[int, ProductVariant]:
        """批量获取规格"""
        pass
