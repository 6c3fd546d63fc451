"""
通用列类型
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    统一以 UTC 存取时间

    SQLite 不保存时区信息，读出的 naive 时间按 UTC 处理；写入前统一转换到 UTC
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
