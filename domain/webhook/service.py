"""
幂等账本领域服务 - 所有下游副作用的闸门
"""
from typing import Optional

from .entity import InboundEvent, LedgerDecision, LedgerOutcome
from .repository import InboundEventRepository


class IdempotencyLedger:
    """按 (source, event_id) 记录每个入站事件，决定是否处理"""

    def __init__(self, repository: InboundEventRepository):
        self.repository = repository

    async def record_or_skip(
        self,
        source: str,
        event_id: str,
        event_type: str,
        payload_hash: str,
        *,
        payload: Optional[dict] = None,
        max_retries: int = 3,
    ) -> LedgerDecision:
        """首次出现则插入；否则根据已处理 / 重试次数决定去留。"""
        candidate = InboundEvent(
            id=None,
            source=source,
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            payload=payload,
            max_retries=max_retries,
        )
        record, created = await self.repository.insert_if_absent(candidate)
        if created:
            return LedgerDecision(outcome=LedgerOutcome.NEW, record=record)

        drift = record.payload_hash != payload_hash

        if record.processed:
            return LedgerDecision(outcome=LedgerOutcome.DUPLICATE, record=record, payload_drift=drift)

        if record.retries_exhausted:
            # 只有第一次到达耗尽状态时告警；并发下以行锁保证只告警一次
            locked = await self.repository.get(source, event_id, for_update=True) or record
            first = locked.mark_escalated()
            if first:
                locked = await self.repository.update(locked)
            return LedgerDecision(
                outcome=LedgerOutcome.EXHAUSTED,
                record=locked,
                newly_escalated=first,
                payload_drift=drift,
            )

        return LedgerDecision(outcome=LedgerOutcome.RETRY, record=record, payload_drift=drift)

    async def claim(self, source: str, event_id: str) -> Optional[InboundEvent]:
        """在当前事务内锁定事件；已处理则返回 None（另一执行单元已完成）。"""
        record = await self.repository.get(source, event_id, for_update=True)
        if record is None or record.processed:
            return None
        return record

    async def mark_processed(self, record: InboundEvent) -> InboundEvent:
        record.mark_processed()
        return await self.repository.update(record)

    async def record_failure(self, source: str, event_id: str, error: str) -> Optional[InboundEvent]:
        """失败计数 +1 并记录错误；已处理的事件不再计数"""
        record = await self.repository.get(source, event_id, for_update=True)
        if record is None or record.processed:
            return record
        record.record_failure(error)
        return await self.repository.update(record)
