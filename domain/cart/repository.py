"""
购物车仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Cart


class CartRepository(ABC):

    @abstractmethod
    async def get_by_id(self, cart_id: int, *, for_update: bool = False) -> Optional[Cart]:
        pass

    @abstractmethod
    async def get_active(
        self,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        for_update: bool = False,
    ) -> Optional[Cart]:
        """获取所有者当前的 ACTIVE 购物车"""
        pass

    @abstractmethod
    async def create(self, cart: Cart) -> Cart:
        pass

    @abstractmethod
    async def save(self, cart: Cart) -> Cart:
        """同步购物车状态与明细行（新增/修改/删除）"""
        pass

    @abstractmethod
    async def list_expired(self, *, now: datetime, limit: int = 100) -> List[Cart]:
        """列出已过期且仍有明细的 ACTIVE 购物车"""
        pass
