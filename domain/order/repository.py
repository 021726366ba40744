"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):

    @abstractmethod
    async def next_order_number(self, year: int) -> str:
        """分配年度内递增的订单号（计数行加锁，事务内有效）"""
        pass

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单及其明细、支付与首条状态历史"""
        pass

    @abstractmethod
    async def get_by_number(self, order_number: str, *, for_update: bool = False) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_external_id(self, external_id: str) -> Optional[Order]:
        """按网关交易ID精确查找订单"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """持久化状态、支付状态，并追加尚未保存的状态历史"""
        pass
