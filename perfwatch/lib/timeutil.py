"""UTC helpers shared by the store and the services."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC already.

    Raises:
        ValueError: The instant falls outside the representable years once
            shifted to UTC (e.g. ``0001-01-01T00:00:00+05:00``)
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f'{value.isoformat()} is out of range in UTC') from e
