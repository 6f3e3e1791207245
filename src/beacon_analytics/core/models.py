"""
Pydantic models for analytics data.

Response models serialize with camelCase keys (``pageViews``,
``clickThroughRate``) to match the public JSON API.
"""
from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Metric(str, Enum):
    """The five rollup counters."""
    SESSIONS = "sessions"
    PAGE_VIEWS = "pageViews"
    PINGS = "pings"
    CLICKS = "clicks"
    GOALS = "goals"

    @property
    def column(self) -> str:
        """Column name in daily_stats."""
        return _METRIC_COLUMNS[self]

    @classmethod
    def parse(cls, value: str | None) -> "Metric | None":
        """Look up a metric by its public name, None if unknown."""
        for metric in cls:
            if metric.value == value:
                return metric
        return None


_METRIC_COLUMNS = {
    Metric.SESSIONS: "sessions",
    Metric.PAGE_VIEWS: "page_views",
    Metric.PINGS: "pings",
    Metric.CLICKS: "clicks",
    Metric.GOALS: "goals",
}


class ApiModel(BaseModel):
    """Base for response models: camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Rollups
# =============================================================================

class DailyStats(ApiModel):
    """Aggregated counters for a single UTC day."""
    date: date
    sessions: int = 0
    page_views: int = 0
    pings: int = 0
    clicks: int = 0
    goals: int = 0

    def count(self, metric: Metric) -> int:
        return getattr(self, metric.column)


class Totals(ApiModel):
    """Rollup sums for a range."""
    sessions: int = 0
    page_views: int = 0
    pings: int = 0
    clicks: int = 0
    goals: int = 0

    @classmethod
    def from_counts(cls, counts: dict[Metric, int]) -> "Totals":
        return cls(**{metric.column: counts.get(metric, 0) for metric in Metric})


class StatsSummary(ApiModel):
    """Totals plus the process start time (diagnostic)."""
    started_at: str
    totals: Totals


# =============================================================================
# Reports
# =============================================================================

class Engagement(ApiModel):
    """Ratios and session-duration figures derived for the overview."""
    click_through_rate: float = 0
    goals_per_session: float = 0
    avg_session_duration: int = 0  # seconds
    max_session_duration: int = 0  # seconds


class ReportOverview(ApiModel):
    totals: Totals
    engagement: Engagement


class LinkStats(ApiModel):
    label: str
    url: str | None = None
    clicks: int


class SetupItemStats(ApiModel):
    item: str
    clicks: int


class PageStats(ApiModel):
    path: str
    views: int


class DeviceStats(ApiModel):
    device: str  # desktop, mobile, tablet, unknown, or an explicit type
    sessions: int


class CityStats(ApiModel):
    city: str
    sessions: int


class SessionDurationStats(ApiModel):
    """Session duration summary in seconds."""
    sessions: int = 0
    avg_duration: int = 0
    max_duration: int = 0
    total_duration: int = 0
