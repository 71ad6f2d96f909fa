"""
Time Utilities

Upstream APIs report time in different shapes:
- alternative.me / Yahoo Finance: seconds since epoch (sometimes as strings)
- Upbit / Bitget: milliseconds since epoch
- Bank of Korea ECOS: calendar dates as YYYYMMDD strings

These helpers normalize them into timezone-aware UTC datetimes and build
the date strings ECOS expects.
"""

from datetime import datetime, timedelta, timezone
from typing import Union


def to_utc_datetime(timestamp: Union[int, float, str]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12: assumed to be milliseconds
        - Otherwise: assumed to be seconds

    Args:
        timestamp: Unix timestamp in seconds or milliseconds; numeric strings
                   such as alternative.me's "1704110400" are accepted

    Returns:
        datetime: Timezone-aware datetime object in UTC

    Raises:
        ValueError: If timestamp is negative or not numeric

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime("1704110400")
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if isinstance(timestamp, str):
        try:
            timestamp = float(timestamp)
        except ValueError:
            raise ValueError(f"Timestamp is not numeric: {timestamp!r}")

    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def current_utc_datetime() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def date_string(days_ago: int = 0, now: datetime = None) -> str:
    """
    Return a YYYYMMDD date string, optionally shifted into the past.

    Args:
        days_ago: Number of days to subtract
        now: Reference time (defaults to current local time)

    Examples:
        >>> date_string(now=datetime(2024, 1, 5))
        '20240105'
        >>> date_string(3, now=datetime(2024, 1, 5))
        '20240102'
    """
    reference = now or datetime.now()
    return (reference - timedelta(days=days_ago)).strftime("%Y%m%d")
