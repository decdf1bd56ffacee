"""
Timestamps are stored as naive UTC datetimes; these helpers convert at the edges.
"""
from datetime import datetime, timezone


def utcnow():
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(dt):
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_seconds(dt):
    """Unix seconds for a stored (naive UTC) or aware datetime."""
    return int(_as_utc(dt).timestamp())


def format_datetime_utc(dt):
    """
    ISO 8601 UTC string for API responses, e.g. "2025-10-15T14:30:45Z".

    Returns None for None.
    """
    if dt is None:
        return None
    return _as_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
