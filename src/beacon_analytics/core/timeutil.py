"""
UTC time helpers shared by the recorder, the range resolver and the reader.

Timestamps are stored as fixed-width UTC text (``2024-03-01T10:00:00.000Z``)
so that lexical order matches time order and SQLite's ``date()`` yields the
UTC calendar day.
"""
import math
from datetime import date, datetime, time, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """Parse a loosely-typed timestamp into an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (date-only, naive, ``Z`` or
    offset suffix) and numeric epoch milliseconds. Naive values are taken
    as UTC. Returns None for anything unparsable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offsets can push values at the edge of the calendar out of range.
        return None


def format_timestamp(value: datetime) -> str:
    """Canonical storage form: UTC, millisecond precision, ``Z`` suffix."""
    value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def utc_date(value: datetime) -> date:
    """UTC calendar day of a timestamp."""
    return value.astimezone(timezone.utc).date()
