"""
Time Utilities

The collector mixes two clocks:
- Wall-clock UTC datetimes for anything persisted or reported (collected_at,
  last collection time, process start time)
- The monotonic clock for durations (tick execution time, uptime), which is
  immune to system clock adjustments

SQLite hands datetimes back without tzinfo, so values read from the database
pass through ensure_utc() before they reach the schemas.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def current_utc_datetime() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        datetime: Current time as timezone-aware datetime in UTC

    Example:
        >>> current_utc_datetime()
        datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive datetime; convert aware datetimes to UTC.

    Args:
        dt: Datetime (naive values are assumed to already be UTC) or None

    Returns:
        Timezone-aware UTC datetime, or None if dt is None

    Examples:
        >>> ensure_utc(datetime(2024, 1, 1, 12, 0, 0))
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def monotonic_ms() -> float:
    """Current monotonic clock reading in milliseconds."""
    return time.monotonic() * 1000.0


def elapsed_ms(started_ms: float) -> int:
    """
    Whole milliseconds elapsed since a monotonic_ms() reading.

    Example:
        >>> started = monotonic_ms()
        >>> ...  # do work
        >>> elapsed_ms(started)
        42
    """
    return max(0, int(monotonic_ms() - started_ms))
