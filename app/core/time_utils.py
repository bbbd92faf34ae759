"""
Timezone-safe datetime utilities.

All timestamps are handled as timezone-aware UTC datetimes. Providers report
times in many shapes (ISO8601, RFC 2822 mail dates, epoch seconds or
milliseconds); everything funnels through these helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from dateutil import parser as date_parser


def utc_now() -> datetime:
    """
    Return current UTC datetime with timezone info attached.

    Example:
        >>> now = utc_now()
        >>> now.tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to UTC.

    If the datetime is naive (no timezone info), it's assumed to be UTC.
    SQLite hands back naive datetimes, so every value read from the database
    goes through here.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Return the UTC datetime `days` days before `now`."""
    return (now or utc_now()) - timedelta(days=days)


def from_epoch_seconds(value: Union[int, float]) -> datetime:
    """Convert epoch seconds to a UTC datetime."""
    return datetime.fromtimestamp(value, tz=timezone.utc)


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Convert datetime to ISO8601 UTC string with 'Z' suffix.

    Example:
        >>> serialize_datetime(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
        '2024-01-01T12:00:00Z'
    """
    if dt is None:
        return None

    iso_string = ensure_utc(dt).isoformat()
    if iso_string.endswith('+00:00'):
        iso_string = iso_string[:-6] + 'Z'
    return iso_string


def parse_datetime(value: Union[str, datetime, int, float, None]) -> Optional[datetime]:
    """
    Parse a provider timestamp to a UTC datetime.

    Accepts ISO8601 strings, RFC 2822 strings (mail and RSS dates), datetimes,
    and epoch seconds. Returns None for empty or unparseable input; callers
    decide whether a missing timestamp matters.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, (int, float)):
        return from_epoch_seconds(value)

    try:
        return ensure_utc(date_parser.parse(value))
    except (ValueError, OverflowError, TypeError):
        return None
