"""
入站事件实体 - 幂等账本的记录单元
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


# last_error 列长度上限
MAX_ERROR_LENGTH = 2000


class InboundEventState(str, Enum):
    """入站事件处理状态（由字段推导，不单独存储）"""
    PENDING = "pending"        # 待处理 / 可重试
    PROCESSED = "processed"    # 已处理，副作用已提交
    FAILED = "failed"          # 重试耗尽，等待人工处理


class LedgerOutcome(str, Enum):
    NEW = "new"
    RETRY = "retry"
    DUPLICATE = "duplicate"
    EXHAUSTED = "exhausted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InboundEvent:
    """
    入站网关事件

    业务规则：
    1. (source, event_id) 全局唯一
    2. processed=True 表示副作用已恰好提交一次
    3. 每次失败 retry_count+1 并记录 last_error
    4. 记录永不删除（审计）
    """

    id: Optional[int]
    source: str
    event_id: str
    event_type: str
    payload_hash: str
    payload: Optional[dict] = None
    processed: bool = False
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None
    escalated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.source or not self.event_id:
            raise DomainValidationException("事件来源和事件ID不能为空", field="event_id")
        if self.max_retries < 1:
            raise DomainValidationException(
                f"max_retries 必须大于0: {self.max_retries}", field="max_retries"
            )

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @property
    def state(self) -> InboundEventState:
        if self.processed:
            return InboundEventState.PROCESSED
        if self.retries_exhausted:
            return InboundEventState.FAILED
        return InboundEventState.PENDING

    def mark_processed(self) -> None:
        self.processed = True
        self.processed_at = _utcnow()
        self.updated_at = self.processed_at

    def record_failure(self, error: str) -> None:
        """记录一次失败尝试"""
        self.retry_count += 1
        self.last_error = (error or "unknown error")[:MAX_ERROR_LENGTH]
        self.updated_at = _utcnow()

    def mark_escalated(self) -> bool:
        """标记已告警；返回是否为首次告警"""
        if self.escalated_at is not None:
            return False
        self.escalated_at = _utcnow()
        self.updated_at = self.escalated_at
        return True


@dataclass(frozen=True)
class LedgerDecision:
    """record_or_skip 的结果"""
    outcome: LedgerOutcome
    record: InboundEvent
    newly_escalated: bool = False
    payload_drift: bool = False

    @property
    def should_process(self) -> bool:
        return self.outcome in (LedgerOutcome.NEW, LedgerOutcome.RETRY)
