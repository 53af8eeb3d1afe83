"""UTC time helpers. All persisted and compared timestamps are timezone-aware UTC."""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today(now: Optional[datetime] = None) -> date:
    return ensure_utc(now or utc_now()).date()


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize to aware UTC.

    Naive values are taken to already be UTC; SQLite hands timestamps back
    naive even for DateTime(timezone=True) columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_unix_seconds(value: Optional[float]) -> Optional[datetime]:
    """Provider timestamps are unix seconds; zero, negative or missing means absent."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
