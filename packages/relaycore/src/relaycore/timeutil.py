"""
Time helpers.

All persisted timestamps are UTC. Some backends (SQLite) hand back naive
datetimes, so comparisons go through ensure_utc().
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_unix(value: str | int | float | None) -> datetime:
    """
    Parse a provider unix timestamp (seconds or milliseconds).

    Raises:
        TypeError, ValueError: not a number, or outside the datetime range
    """
    if value in (None, ""):
        return utcnow()
    seconds = float(value)
    if seconds > 1e11:
        seconds = seconds / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Timestamp out of range: {value}") from e
