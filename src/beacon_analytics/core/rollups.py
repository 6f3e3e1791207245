"""
Daily rollup counters (``daily_stats``).

One row per UTC day with five independent counters. The recorder bumps
them in the same batch as the raw event insert; readers sum them over a
date range instead of scanning raw events.
"""
import logging
from datetime import date

from .models import DailyStats, Metric
from .ranges import TimeRange
from .storage import Database, Statement
from .timeutil import format_timestamp, utc_now

logger = logging.getLogger(__name__)

# Raw table and timestamp column feeding each counter.
_SOURCES = {
    Metric.SESSIONS: ("sessions", "start_time"),
    Metric.PAGE_VIEWS: ("page_views", "timestamp"),
    Metric.PINGS: ("pings", "timestamp"),
    Metric.CLICKS: ("clicks", "timestamp"),
    Metric.GOALS: ("goals", "timestamp"),
}


def _date_filter(time_range: TimeRange | None) -> tuple[str, list]:
    if time_range is None or time_range.all_time:
        return "", []
    return (
        "WHERE date >= ? AND date <= ?",
        [time_range.start_date.isoformat(), time_range.end_date.isoformat()],
    )


class RollupStore:
    """Increment and range-sum access to ``daily_stats``."""

    def __init__(self, db: Database):
        self.db = db

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    @staticmethod
    def increment_statement(metric: Metric, day: date) -> Statement:
        """Atomic create-or-increment of one counter for one day."""
        col = metric.column
        now = format_timestamp(utc_now())
        return (
            f"""
            INSERT INTO daily_stats (date, {col}, created_at, updated_at)
            VALUES (?, 1, ?, ?)
            ON CONFLICT(date) DO UPDATE SET
                {col} = daily_stats.{col} + 1,
                updated_at = excluded.updated_at
            """,
            [day.isoformat(), now, now],
        )

    @staticmethod
    def new_session_statement(session_id: str, day: date) -> Statement:
        """Increment ``sessions`` only if the session does not exist yet.

        Must run before the session upsert in the same batch. Returns a row
        exactly when the counter was bumped, i.e. the session is new.
        """
        now = format_timestamp(utc_now())
        return (
            """
            INSERT INTO daily_stats (date, sessions, created_at, updated_at)
            SELECT ?, 1, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM sessions WHERE id = ?)
            ON CONFLICT(date) DO UPDATE SET
                sessions = daily_stats.sessions + 1,
                updated_at = excluded.updated_at
            RETURNING date
            """,
            [day.isoformat(), now, now, session_id],
        )

    async def upsert_increment(self, metric: Metric, day: date) -> None:
        """Increment one counter for one day, creating the row if needed."""
        await self.db.batch([self.increment_statement(metric, day)])

    async def rebuild(self) -> int:
        """Recompute every counter from the raw tables.

        Returns the number of day rows after the rebuild.
        """
        now = format_timestamp(utc_now())
        statements: list[Statement] = [("DELETE FROM daily_stats", [])]
        for metric, (table, ts_col) in _SOURCES.items():
            col = metric.column
            statements.append((
                f"""
                INSERT INTO daily_stats (date, {col}, created_at, updated_at)
                SELECT date({ts_col}), COUNT(*), ?, ? FROM {table}
                WHERE true
                GROUP BY date({ts_col})
                ON CONFLICT(date) DO UPDATE SET
                    {col} = daily_stats.{col} + excluded.{col},
                    updated_at = excluded.updated_at
                """,
                [now, now],
            ))
        statements.append(("SELECT COUNT(*) as days FROM daily_stats", []))

        results = await self.db.batch(statements)
        days = results[-1][0]["days"] if results[-1] else 0
        logger.info(f"Rebuilt daily_stats: {days} day rows")
        return days

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    async def sum_range(self, metric: Metric, time_range: TimeRange | None) -> int:
        """Sum one counter over the (day-floored) range; all rows if None."""
        where, params = _date_filter(time_range)
        rows = await self.db.query(
            f"SELECT COALESCE(SUM({metric.column}), 0) as total FROM daily_stats {where}",
            params,
        )
        return int(rows[0]["total"] or 0) if rows else 0

    async def sum_all(self, time_range: TimeRange | None) -> dict[Metric, int]:
        """The five counter sums, queried one after another."""
        totals = {}
        for metric in Metric:
            totals[metric] = await self.sum_range(metric, time_range)
        return totals

    async def rows_in_range(self, time_range: TimeRange | None) -> list[DailyStats]:
        """Rollup rows in range, ascending by date."""
        where, params = _date_filter(time_range)
        rows = await self.db.query(
            f"""
            SELECT date, sessions, page_views, pings, clicks, goals
            FROM daily_stats {where}
            ORDER BY date ASC
            """,
            params,
        )
        return [
            DailyStats(
                date=date.fromisoformat(r["date"]),
                sessions=r["sessions"],
                page_views=r["page_views"],
                pings=r["pings"],
                clicks=r["clicks"],
                goals=r["goals"],
            )
            for r in rows
        ]
