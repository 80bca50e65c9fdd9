"""Date manipulation utilities"""

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are compared"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def date_range_days(start: Optional[date], end: Optional[date]) -> int:
    """Days spanned by start..end, 0 when either is missing"""
    if start is None or end is None:
        return 0
    return abs((end - start).days)


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")
