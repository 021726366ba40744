"""
入站事件仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from .entity import InboundEvent


class InboundEventRepository(ABC):
    """入站事件仓储抽象接口"""

    @abstractmethod
    async def insert_if_absent(self, event: InboundEvent) -> Tuple[InboundEvent, bool]:
        """原子地插入或查找：返回 (记录, 是否新建)。

        唯一约束 (source, event_id) 由存储保证；竞争失败的一方返回已存在记录。
        """
        pass

    @abstractmethod
    async def get(self, source: str, event_id: str, *, for_update: bool = False) -> Optional[InboundEvent]:
        """按幂等键获取事件，for_update=True 时加行锁"""
        pass

    @abstractmethod
    async def update(self, event: InboundEvent) -> InboundEvent:
        """更新事件"""
        pass

    @abstractmethod
    async def list_replayable(self, *, older_than: datetime, limit: int = 50) -> List[InboundEvent]:
        """列出未处理、未耗尽重试且早于指定时间的事件"""
        pass
