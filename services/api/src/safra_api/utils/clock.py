"""时间工具。"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """返回带时区的当前 UTC 时间。"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """把数据库读出的时间统一为 UTC 感知时间（SQLite 读回的是朴素时间）。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
