"""
Datetime utilities for the contact store.

Timestamps are stored as ISO-8601 UTC strings with a fixed microsecond
precision, so equal datetimes always serialize to equal strings.
"""
from datetime import datetime, timezone
from typing import Optional


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Serialize a timestamp the way it is stored."""
    return make_aware(dt).astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; empty values give None."""
    if not value:
        return None
    return make_aware(datetime.fromisoformat(value))
