"""UTC helpers shared by services and models."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite round-trips tz-aware datetimes as naive. Treat naive values as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_past(dt: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if dt is None:
        return False
    return as_utc(dt) < (now or utcnow())
