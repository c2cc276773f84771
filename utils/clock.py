# utils/clock.py
import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def period_of(dt: datetime, period_seconds: int) -> int:
    """Index of the UTC-aligned period containing dt"""
    return int((ensure_utc(dt) - EPOCH).total_seconds() // period_seconds)

def period_start(period: int, period_seconds: int) -> datetime:
    return EPOCH + timedelta(seconds=period * period_seconds)

def seconds_until_next_period(dt: datetime, period_seconds: int) -> float:
    return (period_start(period_of(dt, period_seconds) + 1, period_seconds) - ensure_utc(dt)).total_seconds()

def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length"""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)

def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime to ISO string if not None"""
    return dt.isoformat() if dt else None
