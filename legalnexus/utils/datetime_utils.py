"""
Timezone-aware datetime utilities.

All datetime operations should use these helpers to ensure consistent
timezone handling across the codebase.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo


# Hebrew month names (genitive form used in dates, as rendered by he-IL)
HEBREW_MONTHS = (
    "בינואר", "בפברואר", "במרץ", "באפריל", "במאי", "ביוני",
    "ביולי", "באוגוסט", "בספטמבר", "באוקטובר", "בנובמבר", "בדצמבר",
)


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def epoch_ms(now: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch, used for unique storage path suffixes."""
    return int((now or utc_now()).timestamp() * 1000)


def parse_db_timestamp(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse timestamp from database, ensuring timezone-aware UTC.

    Handles:
    - ISO format strings with Z suffix
    - ISO format strings with +00:00 offset
    - Naive datetimes (assumed UTC)
    - Already timezone-aware datetimes

    Args:
        value: Timestamp from database (string or datetime)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None/empty
    """
    if value is None:
        return None

    if isinstance(value, str):
        if not value:
            return None
        value = value.replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    elif isinstance(value, datetime):
        dt = value
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt


def is_past(timestamp: Optional[Union[str, datetime]], now: Optional[datetime] = None) -> bool:
    """
    Check whether a deadline has passed.

    Unparseable or missing timestamps count as passed.
    """
    dt = parse_db_timestamp(timestamp)
    if dt is None:
        return True
    return (now or utc_now()) >= dt


def to_db_timestamp(dt: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC for PostgREST."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def format_hebrew_date(value: Optional[Union[str, datetime]], tz: str = "Asia/Jerusalem") -> str:
    """
    Format a date the way he-IL long dates read: "18 באוקטובר 2026".

    Returns an empty string when the value cannot be parsed.
    """
    dt = parse_db_timestamp(value)
    if dt is None:
        return ""
    dt = dt.astimezone(ZoneInfo(tz))
    return f"{dt.day} {HEBREW_MONTHS[dt.month - 1]} {dt.year}"


def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def add_minutes(dt: datetime, minutes: int) -> datetime:
    return dt + timedelta(minutes=minutes)
