"""
Timestamp helpers shared by parsers, storage and delivery.

All returned datetimes are UTC timezone-aware.
"""

from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser


def ensure_utc(dt: datetime) -> datetime:
    """Ensure datetime is timezone-aware and in UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp value into a UTC datetime.

    Supports:
    - datetime objects (converted to UTC if naive)
    - ISO 8601 formatted strings, including a trailing 'Z'
    - Unix timestamps in seconds (int or float)

    Raises:
        ValueError: If the value cannot be interpreted
    """
    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")

    timestamp_str = value
    # Handle 'Z' suffix (UTC)
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(timestamp_str)
    except ValueError:
        # Fallback for edge cases (e.g. more than 6 fractional digits)
        try:
            dt = date_parser.isoparse(value)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e

    return ensure_utc(dt)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
