"""
Stats and report routes.

Every endpoint accepts ``period`` / ``from`` / ``to`` and echoes the
resolved selection as ``{period, from, to}`` next to its data. Reads are
bounded by the configured query timeout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends, Header, Query

from ..core.auth import AdminStore
from ..core.client import DEFAULT_QUERY_TIMEOUT, AnalyticsClient, clamp_limit, with_timeout
from ..core.errors import InvalidRangeError, QueryTimeoutError
from ..core.models import Metric
from ..core.ranges import TimeRange, bounded, describe_range, resolve_range
from ..core.timeutil import utc_now
from .auth import bearer_token, error_response

logger = logging.getLogger(__name__)

INVALID_METRIC = "Invalid metric. Use sessions, pageViews, pings, clicks or goals."

# /api/stats/<name> -> rollup counter
STAT_METRICS = {
    "clicks": Metric.CLICKS,
    "accesses": Metric.PAGE_VIEWS,
    "sessions": Metric.SESSIONS,
    "pings": Metric.PINGS,
    "goals": Metric.GOALS,
}


@dataclass
class RangeQuery:
    """Raw period selector from the query string."""
    period: str | None = None
    from_: str | None = None
    to: str | None = None


def range_query(
    period: str | None = Query(None),
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
) -> RangeQuery:
    return RangeQuery(period=period or None, from_=from_, to=to)


def create_reports_router(
    client: AnalyticsClient,
    admin: AdminStore,
    query_timeout: float = DEFAULT_QUERY_TIMEOUT,
) -> APIRouter:
    """Create the stats and reports router.

    Args:
        client: Stats/report reader
        admin: Admin store used to check optional bearer tokens
        query_timeout: Seconds to wait for a read before answering 504
    """
    router = APIRouter(tags=["reports"])

    async def _check_token(authorization: str | None) -> None:
        # Tokens are optional on reads; a bad one is noted, not rejected.
        token = bearer_token(authorization)
        if token and not await admin.validate_token(token):
            logger.debug("Ignoring invalid bearer token on report request")

    async def _run(
        description: str,
        selection: RangeQuery,
        fetch: Callable[[TimeRange], Awaitable[Any]],
        build: Callable[[Any], dict],
        authorization: str | None = None,
    ):
        """Resolve the range, run the token check and ``fetch`` under the timeout."""
        now = utc_now()
        try:
            resolved = resolve_range(selection.period, selection.from_, selection.to, now=now)
        except InvalidRangeError as exc:
            logger.debug(f"Rejected {description} request: {exc}")
            return error_response(400, str(exc))

        # All time becomes [epoch, now] with the same "now" the envelope echoes.
        time_range = bounded(resolved, now)

        async def read():
            await _check_token(authorization)
            return await fetch(time_range)

        try:
            result = await with_timeout(read(), query_timeout)
        except QueryTimeoutError:
            logger.warning(f"Timed out fetching {description} after {query_timeout}s")
            return error_response(504, f"Timed out fetching {description}")
        except Exception:
            logger.exception(f"Error fetching {description} (period={selection.period})")
            return error_response(500, f"Failed to fetch {description}")

        return {**describe_range(selection.period, time_range, now), **build(result)}

    # =========================================================================
    # STATS
    # =========================================================================

    @router.get("/api/stats/summary")
    async def stats_summary(
        selection: RangeQuery = Depends(range_query),
        authorization: str | None = Header(None),
    ):
        return await _run(
            "stats summary", selection,
            client.get_stats_by_range,
            lambda summary: summary.to_json(),
            authorization,
        )

    def _count_endpoint(name: str, metric: Metric):
        async def stats_count(
            selection: RangeQuery = Depends(range_query),
            authorization: str | None = Header(None),
        ):
            return await _run(
                f"{name} count", selection,
                lambda time_range: client.get_count(metric, time_range),
                lambda count: {"metric": name, "count": count},
                authorization,
            )

        stats_count.__name__ = f"stats_{name}"
        return stats_count

    for name, metric in STAT_METRICS.items():
        router.add_api_route(f"/api/stats/{name}", _count_endpoint(name, metric), methods=["GET"])

    # =========================================================================
    # REPORTS
    # =========================================================================

    @router.get("/api/reports/overview")
    async def report_overview(selection: RangeQuery = Depends(range_query)):
        return await _run(
            "overview", selection,
            client.get_report_overview,
            lambda overview: overview.to_json(),
        )

    @router.get("/api/reports/timeseries")
    async def report_timeseries(
        selection: RangeQuery = Depends(range_query),
        metric: str | None = None,
    ):
        parsed = Metric.parse(metric) if metric else None
        if metric and parsed is None:
            logger.debug(f"Rejected timeseries metric {metric!r}")
            return error_response(400, INVALID_METRIC)

        return await _run(
            "timeseries", selection,
            lambda time_range: client.get_report_timeseries(time_range, parsed),
            lambda points: {"metric": parsed.value if parsed else "all", "points": points},
        )

    @router.get("/api/reports/top-links")
    async def report_top_links(
        selection: RangeQuery = Depends(range_query),
        limit: str | None = None,
    ):
        size = clamp_limit(limit)
        return await _run(
            "top links", selection,
            lambda time_range: client.get_report_top_links(time_range, size),
            lambda rows: {"limit": size, "rows": [r.to_json() for r in rows]},
        )

    @router.get("/api/reports/top-setup-items")
    async def report_top_setup_items(
        selection: RangeQuery = Depends(range_query),
        limit: str | None = None,
    ):
        size = clamp_limit(limit)
        return await _run(
            "top setup items", selection,
            lambda time_range: client.get_report_top_setup_items(time_range, size),
            lambda rows: {"limit": size, "rows": [r.to_json() for r in rows]},
        )

    @router.get("/api/reports/pages")
    async def report_pages(
        selection: RangeQuery = Depends(range_query),
        limit: str | None = None,
    ):
        size = clamp_limit(limit)
        return await _run(
            "pages", selection,
            lambda time_range: client.get_report_pages(time_range, size),
            lambda rows: {"limit": size, "rows": [r.to_json() for r in rows]},
        )

    @router.get("/api/reports/devices")
    async def report_devices(
        selection: RangeQuery = Depends(range_query),
        limit: str | None = None,
    ):
        size = clamp_limit(limit)
        return await _run(
            "devices", selection,
            lambda time_range: client.get_report_devices(time_range, size),
            lambda rows: {"limit": size, "rows": [r.to_json() for r in rows]},
        )

    @router.get("/api/reports/device-top")
    async def report_device_top(selection: RangeQuery = Depends(range_query)):
        return await _run(
            "top device", selection,
            client.get_report_top_device,
            lambda top: {"top": top.to_json() if top else None},
        )

    @router.get("/api/reports/cities")
    async def report_cities(
        selection: RangeQuery = Depends(range_query),
        limit: str | None = None,
    ):
        size = clamp_limit(limit)
        return await _run(
            "cities", selection,
            lambda time_range: client.get_report_cities(time_range, size),
            lambda rows: {"limit": size, "rows": [r.to_json() for r in rows]},
        )

    @router.get("/api/reports/session-duration")
    async def report_session_duration(selection: RangeQuery = Depends(range_query)):
        return await _run(
            "session duration", selection,
            client.get_report_session_duration,
            lambda stats: stats.to_json(),
        )

    @router.get("/api/reports/base-accesses")
    async def report_base_accesses(
        selection: RangeQuery = Depends(range_query),
        path: str | None = None,
    ):
        target = (path or "").strip() or "/"
        return await _run(
            "base accesses", selection,
            lambda time_range: client.get_report_base_accesses(time_range, target),
            lambda count: {"path": target, "count": count},
        )

    @router.get("/api/reports/button-clicks")
    async def report_button_clicks(selection: RangeQuery = Depends(range_query)):
        return await _run(
            "button clicks", selection,
            client.get_report_button_clicks,
            lambda count: {"count": count},
        )

    return router
