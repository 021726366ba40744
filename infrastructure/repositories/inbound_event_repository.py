"""
入站事件仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.webhook.entity import InboundEvent
from domain.webhook.repository import InboundEventRepository
from infrastructure.models.inbound_event import InboundEventModel
from infrastructure.repositories.base import dialect_name, ensure_utc, lock
from core.logging_config import get_logger


logger = get_logger(__name__)

_CONFLICT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SQLAlchemyInboundEventRepository(InboundEventRepository):
    """入站事件仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: InboundEventModel) -> InboundEvent:
        return InboundEvent(
            id=model.id,
            source=model.source,
            event_id=model.event_id,
            event_type=model.event_type,
            payload_hash=model.payload_hash,
            payload=model.payload,
            processed=bool(model.processed),
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            last_error=model.last_error,
            escalated_at=ensure_utc(model.escalated_at),
            created_at=ensure_utc(model.created_at),
            processed_at=ensure_utc(model.processed_at),
            updated_at=ensure_utc(model.updated_at),
        )

    def _values(self, event: InboundEvent) -> dict:
        return {
            "source": event.source,
            "event_id": event.event_id,
            "event_type": event.event_type,
            "payload_hash": event.payload_hash,
            "payload": event.payload,
            "processed": event.processed,
            "retry_count": event.retry_count,
            "max_retries": event.max_retries,
        }

    async def _fetch(self, source: str, event_id: str, *, for_update: bool = False) -> Optional[InboundEventModel]:
        stmt = select(InboundEventModel).where(
            InboundEventModel.source == source,
            InboundEventModel.event_id == event_id,
        )
        result = await self.session.execute(lock(stmt, for_update))
        return result.scalar_one_or_none()

    async def insert_if_absent(self, event: InboundEvent) -> Tuple[InboundEvent, bool]:
        """INSERT ... ON CONFLICT DO NOTHING；其他方言退回到 savepoint + IntegrityError"""
        insert_fn = _CONFLICT_INSERTS.get(dialect_name(self.session))
        if insert_fn is not None:
            stmt = (
                insert_fn(InboundEventModel)
                .values(**self._values(event))
                .on_conflict_do_nothing(index_elements=["source", "event_id"])
                .returning(InboundEventModel.id)
            )
            result = await self.session.execute(stmt)
            created = result.scalar_one_or_none() is not None
        else:
            try:
                async with self.session.begin_nested():
                    self.session.add(InboundEventModel(**self._values(event)))
                created = True
            except IntegrityError:
                created = False

        model = await self._fetch(event.source, event.event_id)
        if model is None:
            # 冲突方的事务尚未提交时，普通读看不到它；交由调用方按可重试失败处理
            raise RuntimeError(f"inbound event {event.source}/{event.event_id} not visible after insert")
        if created:
            logger.info(
                "inbound_event_recorded",
                source=event.source,
                event_id=event.event_id,
                event_type=event.event_type,
            )
        return self._to_entity(model), created

    async def get(self, source: str, event_id: str, *, for_update: bool = False) -> Optional[InboundEvent]:
        model = await self._fetch(source, event_id, for_update=for_update)
        return self._to_entity(model) if model else None

    async def update(self, event: InboundEvent) -> InboundEvent:
        model = await self._fetch(event.source, event.event_id)
        if model is None:
            raise ValueError(f"Inbound event {event.source}/{event.event_id} not found")

        model.processed = event.processed
        model.retry_count = event.retry_count
        model.last_error = event.last_error
        model.escalated_at = event.escalated_at
        model.processed_at = event.processed_at
        if event.updated_at is not None:
            model.updated_at = event.updated_at

        await self.session.flush()
        return self._to_entity(model)

    async def list_replayable(self, *, older_than: datetime, limit: int = 50) -> List[InboundEvent]:
        result = await self.session.execute(
            select(InboundEventModel)
            .where(
                InboundEventModel.processed.is_(False),
                InboundEventModel.retry_count < InboundEventModel.max_retries,
                InboundEventModel.created_at <= older_than,
            )
            .order_by(InboundEventModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
