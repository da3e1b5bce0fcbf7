"""Timestamp utilities for notesync.

All timestamps are timezone-aware UTC datetimes. They are serialised as
ISO-8601 strings with microsecond precision for storage and transport.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialise a datetime to an ISO-8601 string in UTC.

    Naive datetimes are assumed to already be in UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a trailing "Z" as produced by JavaScript clients.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
    """
    if value is None or value == "":
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def seconds_between(a: datetime, b: datetime) -> float:
    """Absolute distance between two datetimes in seconds."""
    return abs((a - b).total_seconds())


def format_timestamp(dt: Optional[datetime]) -> str:
    """Format a datetime in the local timezone for display.

    Returns:
        "YYYY-MM-DD HH:MM:SS" in local time, or empty string if dt is None
    """
    if dt is None:
        return ""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")
