"""
仓储实现的公共辅助函数
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区（SQLite 读回的时间不带时区）"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def lock(stmt: Select, for_update: bool) -> Select:
    """按需追加 FOR UPDATE，并刷新身份映射中的旧值"""
    if not for_update:
        return stmt
    return stmt.with_for_update().execution_options(populate_existing=True)


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name
