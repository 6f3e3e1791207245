"""
Read side of the analytics store.

Counts and time series come from the ``daily_stats`` rollups. Dimensional
breakdowns (links, pages, devices, cities, durations) need a group-by over
raw event rows, so they query the event tables directly.
"""
import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

from ..user_agent import device_case_sql
from .errors import QueryTimeoutError
from .models import (
    CityStats,
    DeviceStats,
    Engagement,
    LinkStats,
    Metric,
    PageStats,
    ReportOverview,
    SessionDurationStats,
    SetupItemStats,
    StatsSummary,
    Totals,
)
from .ranges import TimeRange, bounded
from .rollups import RollupStore
from .storage import Database
from .timeutil import format_timestamp, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_QUERY_TIMEOUT = 8.0

# Process start, reported by the summary endpoint for diagnostics.
STARTED_AT = format_timestamp(utc_now())

LINK_KINDS = ("link", "social")


async def with_timeout(awaitable: Awaitable[T], seconds: float = DEFAULT_QUERY_TIMEOUT) -> T:
    """Wait at most ``seconds`` for a query.

    On expiry the wait is abandoned (the backend call may still finish in
    the background) and QueryTimeoutError is raised.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise QueryTimeoutError(f"Query exceeded {seconds}s") from None


def clamp_limit(limit: Any, default: int = DEFAULT_LIMIT) -> int:
    """Clamp a user-supplied limit into [1, MAX_LIMIT]."""
    try:
        value = int(float(limit))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(1, min(value, MAX_LIMIT))


def _ratio(numerator: int, denominator: int) -> float:
    if not denominator:
        return 0
    return round(numerator / denominator, 4)


def _meta(field: str) -> str:
    """Metadata field from the payload, or from a nested ``metadata`` object."""
    return (
        f"COALESCE(json_extract(metadata, '$.{field}'), "
        f"json_extract(metadata, '$.metadata.{field}'))"
    )


class AnalyticsClient:
    """Stats and report queries over rollups and raw events."""

    def __init__(self, db: Database, rollups: Optional[RollupStore] = None):
        self.db = db
        self.rollups = rollups or RollupStore(db)

    async def _query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        """Execute a SQL query against the store."""
        return await self.db.query(sql, params)

    def _date_params(self, time_range: Optional[TimeRange]) -> list[str]:
        """Day bounds for raw queries; all time becomes [epoch, today]."""
        effective = bounded(time_range)
        return [effective.start_date.isoformat(), effective.end_date.isoformat()]

    # =========================================================================
    # ROLLUP COUNTS
    # =========================================================================

    async def get_count(self, metric: Metric, time_range: Optional[TimeRange]) -> int:
        """Single counter summed over the range."""
        return await self.rollups.sum_range(metric, time_range)

    async def get_totals(self, time_range: Optional[TimeRange]) -> Totals:
        return Totals.from_counts(await self.rollups.sum_all(time_range))

    async def get_stats_by_range(self, time_range: Optional[TimeRange]) -> StatsSummary:
        """All five counters plus the process start time."""
        return StatsSummary(started_at=STARTED_AT, totals=await self.get_totals(time_range))

    # =========================================================================
    # OVERVIEW & TIME SERIES
    # =========================================================================

    async def get_report_overview(self, time_range: Optional[TimeRange]) -> ReportOverview:
        """Totals from rollups plus engagement ratios and session durations."""
        totals = await self.get_totals(time_range)
        durations = await self.get_report_session_duration(time_range)

        return ReportOverview(
            totals=totals,
            engagement=Engagement(
                click_through_rate=_ratio(totals.clicks, totals.page_views),
                goals_per_session=_ratio(totals.goals, totals.sessions),
                avg_session_duration=durations.avg_duration,
                max_session_duration=durations.max_duration,
            ),
        )

    async def get_report_timeseries(
        self,
        time_range: Optional[TimeRange],
        metric: Optional[Metric] = None,
    ) -> list[dict[str, Any]]:
        """Daily points; all five counters, or only ``metric`` when given."""
        rows = await self.rollups.rows_in_range(time_range)

        if metric is None:
            return [row.to_json() for row in rows]

        return [
            {"date": row.date.isoformat(), metric.value: row.count(metric)}
            for row in rows
        ]

    # =========================================================================
    # CLICK BREAKDOWNS
    # =========================================================================

    async def get_report_top_links(
        self,
        time_range: Optional[TimeRange],
        limit: int = DEFAULT_LIMIT,
    ) -> list[LinkStats]:
        """Most clicked links (link/social clicks, or any click with a url)."""
        kinds = ", ".join("?" for _ in LINK_KINDS)
        results = await self._query(
            f"""
            SELECT
                COALESCE({_meta('label')}, 'unknown') as label,
                {_meta('url')} as url,
                COUNT(*) as clicks
            FROM clicks
            WHERE date(timestamp) >= ? AND date(timestamp) <= ?
                AND ({_meta('kind')} IN ({kinds}) OR {_meta('url')} IS NOT NULL)
            GROUP BY label, url
            ORDER BY clicks DESC, label ASC
            LIMIT ?
            """,
            self._date_params(time_range) + list(LINK_KINDS) + [clamp_limit(limit)],
        )

        return [
            LinkStats(
                label=str(r["label"]),
                url=str(r["url"]) if r["url"] is not None else None,
                clicks=r["clicks"],
            )
            for r in results
        ]

    async def get_report_top_setup_items(
        self,
        time_range: Optional[TimeRange],
        limit: int = DEFAULT_LIMIT,
    ) -> list[SetupItemStats]:
        """Most used "setup" interactions."""
        results = await self._query(
            f"""
            SELECT
                COALESCE({_meta('item')}, {_meta('label')}, 'unknown') as item,
                COUNT(*) as clicks
            FROM clicks
            WHERE date(timestamp) >= ? AND date(timestamp) <= ?
                AND {_meta('kind')} = 'setup'
            GROUP BY item
            ORDER BY clicks DESC, item ASC
            LIMIT ?
            """,
            self._date_params(time_range) + [clamp_limit(limit)],
        )

        return [SetupItemStats(item=str(r["item"]), clicks=r["clicks"]) for r in results]

    async def get_report_button_clicks(self, time_range: Optional[TimeRange]) -> int:
        """Clicks on buttons (metadata kind or element tag)."""
        results = await self._query(
            f"""
            SELECT COUNT(*) as count
            FROM clicks
            WHERE date(timestamp) >= ? AND date(timestamp) <= ?
                AND ({_meta('kind')} = 'button' OR lower(element_tag) = 'button')
            """,
            self._date_params(time_range),
        )
        return results[0]["count"] if results else 0

    # =========================================================================
    # PAGES
    # =========================================================================

    async def get_report_pages(
        self,
        time_range: Optional[TimeRange],
        limit: int = DEFAULT_LIMIT,
    ) -> list[PageStats]:
        """Top pages by views."""
        results = await self._query(
            """
            SELECT path, COUNT(*) as views
            FROM page_views
            WHERE date(timestamp) >= ? AND date(timestamp) <= ?
            GROUP BY path
            ORDER BY views DESC, path ASC
            LIMIT ?
            """,
            self._date_params(time_range) + [clamp_limit(limit)],
        )

        return [PageStats(path=r["path"], views=r["views"]) for r in results]

    async def get_report_base_accesses(
        self,
        time_range: Optional[TimeRange],
        path: str = "/",
    ) -> int:
        """Page views of a single path."""
        results = await self._query(
            """
            SELECT COUNT(*) as count
            FROM page_views
            WHERE date(timestamp) >= ? AND date(timestamp) <= ? AND path = ?
            """,
            self._date_params(time_range) + [path],
        )
        return results[0]["count"] if results else 0

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def get_report_devices(
        self,
        time_range: Optional[TimeRange],
        limit: int = DEFAULT_LIMIT,
    ) -> list[DeviceStats]:
        """Sessions by device class."""
        results = await self._query(
            f"""
            SELECT {device_case_sql()} as device, COUNT(*) as sessions
            FROM sessions
            WHERE date(start_time) >= ? AND date(start_time) <= ?
            GROUP BY device
            ORDER BY sessions DESC, device ASC
            LIMIT ?
            """,
            self._date_params(time_range) + [clamp_limit(limit)],
        )

        return [DeviceStats(device=r["device"], sessions=r["sessions"]) for r in results]

    async def get_report_top_device(self, time_range: Optional[TimeRange]) -> Optional[DeviceStats]:
        """The most common device class, or None without sessions."""
        rows = await self.get_report_devices(time_range, limit=1)
        return rows[0] if rows else None

    async def get_report_cities(
        self,
        time_range: Optional[TimeRange],
        limit: int = DEFAULT_LIMIT,
    ) -> list[CityStats]:
        """Sessions by city."""
        results = await self._query(
            """
            SELECT COALESCE(NULLIF(trim(city), ''), 'unknown') as city, COUNT(*) as sessions
            FROM sessions
            WHERE date(start_time) >= ? AND date(start_time) <= ?
            GROUP BY 1
            ORDER BY sessions DESC, city ASC
            LIMIT ?
            """,
            self._date_params(time_range) + [clamp_limit(limit)],
        )

        return [CityStats(city=r["city"], sessions=r["sessions"]) for r in results]

    async def get_report_session_duration(self, time_range: Optional[TimeRange]) -> SessionDurationStats:
        """Duration summary for sessions started in range.

        The average uses SQLite ROUND(), which rounds halves away from zero.
        """
        results = await self._query(
            """
            SELECT
                COUNT(*) as sessions,
                ROUND(AVG(duration)) as avg_duration,
                MAX(duration) as max_duration,
                SUM(duration) as total_duration
            FROM sessions
            WHERE date(start_time) >= ? AND date(start_time) <= ?
            """,
            self._date_params(time_range),
        )

        row = results[0] if results else {}
        return SessionDurationStats(
            sessions=row.get("sessions") or 0,
            avg_duration=int(row.get("avg_duration") or 0),
            max_duration=row.get("max_duration") or 0,
            total_duration=row.get("total_duration") or 0,
        )
