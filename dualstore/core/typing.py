"""
Timestamp helpers.

SQLite hands datetimes back naive; everything stored through SQLModel is UTC.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Current UTC time (timezone-aware).

    Usage:
        created_at: datetime = Field(default_factory=utc_now)
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def epoch_ms(value: datetime | None = None) -> int:
    """Milliseconds since the epoch (now when value is None)."""
    return int((value or utc_now()).timestamp() * 1000)


__all__ = ["utc_now", "as_utc", "epoch_ms"]
