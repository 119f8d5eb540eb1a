"""
Timezone-aware datetime utilities.

Server timestamps arrive as ISO strings in several shapes; everything inside
the sync layer is a timezone-aware UTC datetime.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

# UTC timezone constant
UTC = timezone.utc


def now_utc() -> datetime:
    """
    Get current UTC datetime (timezone-aware).

    Returns:
        datetime: Current UTC time with tzinfo set to UTC
    """
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def local_date(dt: datetime, display_timezone: str = "UTC") -> date:
    """Calendar date of a timestamp in the display timezone."""
    return ensure_utc(dt).astimezone(ZoneInfo(display_timezone)).date()


def format_date_label(day: date, today: date) -> str:
    """
    Human label for a message date bucket.

    Example:
        >>> format_date_label(date(2025, 1, 23), today=date(2025, 1, 24))
        'Yesterday'
    """
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return day.isoformat()
