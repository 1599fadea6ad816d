from __future__ import annotations

from datetime import UTC, datetime, timedelta


def now_utc() -> datetime:
    """Get current UTC time with timezone."""
    return datetime.now(UTC)


def to_utc(dt: datetime | None) -> datetime | None:
    """Convert datetime to UTC, handling naive datetimes."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def iso(dt: datetime | None) -> str | None:
    """Convert datetime to ISO format string."""
    if dt is None:
        return None
    return to_utc(dt).isoformat()


def parse_iso(s: str | None) -> datetime | None:
    """Parse ISO format string to datetime."""
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s)
        return to_utc(dt)
    except (ValueError, TypeError):
        return None


def cutoff(max_age: timedelta) -> datetime:
    """Point in time `max_age` ago."""
    return now_utc() - max_age


def db_timestamp(dt: datetime | None) -> str | None:
    """Fixed-width UTC text timestamp; lexical order matches time order."""
    if dt is None:
        return None
    return to_utc(dt).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")
