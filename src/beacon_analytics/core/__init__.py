"""
Core analytics module.

Range resolution, event recording, daily rollups and the stats/report
reader, all independent of the HTTP layer.
"""

from .auth import AdminStore, AdminUser
from .client import AnalyticsClient, clamp_limit, with_timeout
from .errors import AnalyticsError, InvalidRangeError, QueryTimeoutError, StorageError
from .models import (
    CityStats,
    DailyStats,
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
from .ranges import TimeRange, describe_range, resolve_range
from .recorder import EventRecorder, TrackResult
from .rollups import RollupStore
from .storage import D1Database, Database, SQLiteDatabase

__all__ = [
    "Database", "SQLiteDatabase", "D1Database",
    "TimeRange", "resolve_range", "describe_range",
    "EventRecorder", "TrackResult", "RollupStore",
    "AnalyticsClient", "clamp_limit", "with_timeout",
    "AdminStore", "AdminUser",
    "Metric", "DailyStats", "Totals", "StatsSummary", "Engagement", "ReportOverview",
    "LinkStats", "SetupItemStats", "PageStats", "DeviceStats", "CityStats",
    "SessionDurationStats",
    "AnalyticsError", "StorageError", "QueryTimeoutError", "InvalidRangeError",
]
