"""
Period selector resolution.

Turns ``period`` / ``from`` / ``to`` query values into a closed
``TimeRange`` (or None for all time). Rollup reads floor both bounds to
UTC calendar days; raw breakdown queries substitute ``[epoch, now]`` when
no period was given.
"""
import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from .errors import InvalidRangeError
from .timeutil import EPOCH, parse_timestamp, utc_date, utc_now

PERIODS = ("day", "week", "month", "year", "custom")


@dataclass(frozen=True)
class TimeRange:
    """Closed interval ``[gte, lte]`` of aware UTC datetimes.

    ``all_time`` marks the ``[epoch, now]`` sentinel standing in for "no
    period": rollup reads skip the date filter for it.
    """
    gte: datetime
    lte: datetime
    all_time: bool = False

    @property
    def start_date(self) -> date:
        return utc_date(self.gte)

    @property
    def end_date(self) -> date:
        # Floored, not ceilinged: an lte anywhere in today still covers today.
        return utc_date(self.lte)


def _subtract_months(value: datetime, months: int) -> datetime:
    """Calendar-aware month subtraction, clamped to the month's last day."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _period_start(period: str, now: datetime) -> datetime:
    if period == "day":
        return now - timedelta(days=1)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return _subtract_months(now, 1)
    return _subtract_months(now, 12)


def resolve_range(
    period: str | None,
    from_: str | None = None,
    to: str | None = None,
    now: datetime | None = None,
) -> TimeRange | None:
    """Resolve a period selector into a concrete interval.

    Args:
        period: day, week, month, year, custom, or None for all time
        from_: Custom start (required for custom)
        to: Custom end (defaults to now when absent or unparsable)
        now: Reference instant, captured once per request

    Returns:
        TimeRange, or None when no period was given

    Raises:
        InvalidRangeError: Unknown period, missing/unparsable custom start,
            or start after end
    """
    if period is None:
        return None

    if period not in PERIODS:
        raise InvalidRangeError("Invalid period. Use day, week, month, year or custom.")

    now = now or utc_now()

    if period == "custom":
        start = parse_timestamp(from_)
        if start is None:
            raise InvalidRangeError("Custom period requires a valid 'from' query parameter.")

        end = parse_timestamp(to) or now
        if start > end:
            raise InvalidRangeError("'from' must be on or before 'to'.")

        return TimeRange(gte=start, lte=end)

    return TimeRange(gte=_period_start(period, now), lte=now)


def bounded(time_range: TimeRange | None, now: datetime | None = None) -> TimeRange:
    """Return the range itself, or the all-time sentinel ``[epoch, now]``."""
    if time_range is not None:
        return time_range
    return TimeRange(gte=EPOCH, lte=now or utc_now(), all_time=True)


def describe_range(
    period: str | None,
    time_range: TimeRange | None,
    now: datetime | None = None,
) -> dict:
    """Response envelope echoing the resolved selection as ISO dates."""
    effective = bounded(time_range, now)
    return {
        "period": period or "all",
        "from": effective.start_date.isoformat(),
        "to": effective.end_date.isoformat(),
    }
