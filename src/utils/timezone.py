"""
UTC helpers. Everything is stored and compared in UTC; some backends
(SQLite in tests) hand back naive datetimes, which are taken to be UTC.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def same_instant(a: Optional[datetime], b: Optional[datetime]) -> bool:
    """Compare at second precision; platforms rarely report sub-second times."""
    a, b = ensure_utc(a), ensure_utc(b)
    if a is None or b is None:
        return a is b
    return int(a.timestamp()) == int(b.timestamp())
