"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a raw timestamp into an aware UTC datetime.

    Accepts datetimes, dates (midnight UTC), ISO-8601 strings (a trailing "Z"
    is accepted) and epoch milliseconds. Naive values are taken as UTC.
    Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def default_window(days: int, today: Optional[date] = None) -> tuple[date, date]:
    """Trailing window of `days` days ending today (inclusive)"""
    end = today or utc_now().date()
    return end - timedelta(days=days), end
