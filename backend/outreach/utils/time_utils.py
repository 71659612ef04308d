"""
Time Utilities
UTC timestamps and ISO-8601 parsing shared by services and storage
"""
from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, int, float, None]) -> Optional[datetime]:
    """
    Parse a stored or provider timestamp into an aware datetime.

    Accepts ISO strings (with or without a trailing Z), datetimes, and
    epoch milliseconds as sent in provider webhooks.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def isoformat(value: Optional[datetime] = None) -> str:
    """ISO string for a datetime (default: now)."""
    return (value or utc_now()).isoformat()
