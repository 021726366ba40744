"""
入站事件数据库模型 - 幂等账本
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    Index, UniqueConstraint
)
from datetime import datetime, timezone

from .base import Base


class InboundEventModel(Base):
    """
    入站事件表

    (source, event_id) 唯一约束是并发投递下“先写者胜”的最终裁决
    """
    __tablename__ = "inbound_events"

    id = Column(Integer, primary_key=True, autoincrement=True)

    source = Column(String(64), nullable=False, comment="事件来源，如 payment-gateway")
    event_id = Column(String(255), nullable=False, comment="来源内唯一的事件ID")
    event_type = Column(String(128), nullable=False, comment="事件类型")
    payload_hash = Column(String(64), nullable=False, comment="原始请求体 SHA-256")
    payload = Column(JSON, nullable=True, comment="解析后的事件数据（用于重放）")

    processed = Column(Boolean, nullable=False, default=False, comment="副作用是否已提交")
    retry_count = Column(Integer, nullable=False, default=0, comment="失败次数")
    max_retries = Column(Integer, nullable=False, default=3, comment="最大重试次数")
    last_error = Column(Text, nullable=True, comment="最近一次错误")
    escalated_at = Column(DateTime(timezone=True), nullable=True, comment="重试耗尽告警时间")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="首次接收时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="处理完成时间")

    __table_args__ = (
        UniqueConstraint("source", "event_id", name="uq_inbound_events_source_event_id"),
        Index("ix_inbound_events_pending", "processed", "created_at"),
    )

    def __repr__(self):
        return (
            f"<InboundEventModel(id={self.id}, source='{self.source}', event_id='{self.event_id}', "
            f"processed={self.processed}, retry_count={self.retry_count})>"
        )
