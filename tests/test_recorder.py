"""Tests for the event recorder write path."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from beacon_analytics.core.client import AnalyticsClient
from beacon_analytics.core.errors import StorageError
from beacon_analytics.core.models import Metric
from beacon_analytics.core.ranges import TimeRange
from beacon_analytics.core.recorder import EventRecorder
from beacon_analytics.core.rollups import RollupStore
from beacon_analytics.core.timeutil import parse_timestamp, utc_now

DAY = TimeRange(
    gte=datetime(2024, 3, 1, tzinfo=timezone.utc),
    lte=datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc),
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _rows(db, sql, params=None):
    return run_async(db.query(sql, params))


class TestTrackSession:
    """Test session creation and refresh."""

    def test_repeated_session_counts_once(self, db):
        """Same id tracked three times bumps the sessions rollup once."""
        recorder = EventRecorder(db)
        results = [
            run_async(recorder.track_session({"sessionId": "S1", "timestamp": "2024-03-01T10:00:00Z"}))
            for _ in range(3)
        ]

        assert [r.session_created for r in results] == [True, False, False]
        assert run_async(recorder.rollups.sum_range(Metric.SESSIONS, DAY)) == 1

    def test_start_time_never_changes(self, db):
        recorder = EventRecorder(db)
        run_async(recorder.track_session({"sessionId": "S1", "startTime": "2024-03-01T10:00:00Z"}))
        run_async(recorder.track_session({"sessionId": "S1", "startTime": "2024-03-01T15:00:00Z"}))

        rows = _rows(db, "SELECT start_time FROM sessions WHERE id = ?", ["S1"])
        assert rows == [{"start_time": "2024-03-01T10:00:00.000Z"}]

    def test_session_id_aliases(self, db):
        """sessionId wins over session_id, which wins over id."""
        recorder = EventRecorder(db)
        result = run_async(recorder.track_session({"session_id": "B", "id": "C"}))
        assert result.session_id == "B"

        result = run_async(recorder.track_session({"sessionId": "A", "session_id": "B"}))
        assert result.session_id == "A"

    def test_generates_session_id(self, db):
        recorder = EventRecorder(db)
        result = run_async(recorder.track_session({}))

        assert result.session_created is True
        assert len(result.session_id) == 32

    def test_user_agent_enrichment(self, db):
        """Browser and OS are derived from the user agent when not sent."""
        recorder = EventRecorder(db)
        run_async(recorder.track_session({"sessionId": "S1", "userAgent": IPHONE_UA, "city": "Lisbon"}))

        row = _rows(db, "SELECT browser, os, city, device_type FROM sessions")[0]
        assert row == {"browser": "Safari", "os": "iOS", "city": "Lisbon", "device_type": None}

    def test_refresh_keeps_known_fields(self, db):
        """A later event without city does not erase the stored city."""
        recorder = EventRecorder(db)
        run_async(recorder.track_session({"sessionId": "S1", "city": "Lisbon"}))
        run_async(recorder.track_session({"sessionId": "S1", "country": "PT"}))

        row = _rows(db, "SELECT city, country FROM sessions")[0]
        assert row == {"city": "Lisbon", "country": "PT"}


class TestTrackEvents:
    """Test page views, clicks and rollup consistency."""

    def test_n_views_sum_to_n(self, db):
        recorder = EventRecorder(db)
        for i in range(4):
            run_async(recorder.track_page_view({
                "sessionId": "S1",
                "path": f"/p{i}",
                "timestamp": f"2024-03-01T1{i}:00:00Z",
            }))

        assert run_async(recorder.rollups.sum_range(Metric.PAGE_VIEWS, DAY)) == 4
        assert run_async(recorder.rollups.sum_range(Metric.SESSIONS, DAY)) == 1

    def test_view_path_defaults_to_root(self, db):
        recorder = EventRecorder(db)
        run_async(recorder.track_page_view({"sessionId": "S1", "viewedAt": "2024-03-01T10:00:00Z"}))

        rows = _rows(db, "SELECT path, timestamp FROM page_views")
        assert rows == [{"path": "/", "timestamp": "2024-03-01T10:00:00.000Z"}]

    def test_event_rollup_uses_event_day(self, db):
        """Rollup day is the event's UTC day, not the session's."""
        recorder = EventRecorder(db)
        run_async(recorder.track_session({"sessionId": "S1", "timestamp": "2024-02-29T23:00:00Z"}))
        run_async(recorder.track_click({"sessionId": "S1", "clickedAt": "2024-03-01T01:00:00+00:00"}))

        assert run_async(recorder.rollups.sum_range(Metric.CLICKS, DAY)) == 1
        assert run_async(recorder.rollups.sum_range(Metric.SESSIONS, DAY)) == 0

    def test_click_fields(self, db):
        recorder = EventRecorder(db)
        run_async(recorder.track_click({
            "sessionId": "S1",
            "elementTag": "BUTTON",
            "x": "12",
            "y": 7.9,
            "pagePath": "/pricing",
            "timestamp": "2024-03-01T10:00:00Z",
        }))

        row = _rows(db, "SELECT element_tag, x, y, page_path FROM clicks")[0]
        assert row == {"element_tag": "BUTTON", "x": 12, "y": 7, "page_path": "/pricing"}


class TestTrackPing:
    """Test heartbeat handling."""

    def test_last_ping_wins(self, db):
        """Session takes the most recently recorded ping, not the max."""
        recorder = EventRecorder(db)
        run_async(recorder.track_ping({"sessionId": "S1", "duration": 30, "timestamp": "2024-03-01T10:00:30Z"}))
        run_async(recorder.track_ping({"sessionId": "S1", "duration": 10, "timestamp": "2024-03-01T10:00:10Z"}))

        row = _rows(db, "SELECT duration, last_ping_time FROM sessions WHERE id = 'S1'")[0]
        assert row == {"duration": 10, "last_ping_time": "2024-03-01T10:00:10.000Z"}
        assert run_async(recorder.rollups.sum_range(Metric.PINGS, DAY)) == 2

    def test_negative_duration_clamped(self, db):
        recorder = EventRecorder(db)
        run_async(recorder.track_ping({"sessionId": "S1", "duration": -5}))

        assert _rows(db, "SELECT duration FROM pings") == [{"duration": 0}]


class TestTrackGoal:
    """Test goal conversions."""

    def test_anonymous_goal(self, db):
        """A goal without a session alias touches no session."""
        recorder = EventRecorder(db)
        result = run_async(recorder.track_goal({"name": "signup", "timestamp": "2024-03-01T10:00:00Z"}))

        assert result.session_id is None
        assert _rows(db, "SELECT COUNT(*) as n FROM sessions") == [{"n": 0}]
        assert _rows(db, "SELECT session_id, name FROM goals") == [{"session_id": None, "name": "signup"}]
        assert run_async(recorder.rollups.sum_range(Metric.GOALS, DAY)) == 1

    def test_plain_id_does_not_link_goal(self, db):
        recorder = EventRecorder(db)
        result = run_async(recorder.track_goal({"id": "S1", "goalName": "purchase", "value": "19.5"}))

        assert result.session_id is None
        assert _rows(db, "SELECT name, value FROM goals") == [{"name": "purchase", "value": 19.5}]

    def test_goal_with_session(self, db):
        recorder = EventRecorder(db)
        result = run_async(recorder.track_goal({"session_id": "S9"}))

        assert result.session_id == "S9"
        assert result.session_created is True
        assert _rows(db, "SELECT name FROM goals") == [{"name": "goal"}]


class TestAtomicity:
    """Test that an event and its rollup apply together or not at all."""

    def test_failed_rollup_rolls_back_event(self, db, monkeypatch):
        monkeypatch.setattr(
            RollupStore,
            "increment_statement",
            staticmethod(lambda metric, day: ("INSERT INTO missing_table VALUES (1)", [])),
        )
        recorder = EventRecorder(db)

        with pytest.raises(StorageError):
            run_async(recorder.track_page_view({"sessionId": "S1", "timestamp": "2024-03-01T10:00:00Z"}))

        assert _rows(db, "SELECT COUNT(*) as n FROM page_views") == [{"n": 0}]
        assert _rows(db, "SELECT COUNT(*) as n FROM sessions") == [{"n": 0}]
        assert _rows(db, "SELECT COUNT(*) as n FROM daily_stats") == [{"n": 0}]

    def test_rollup_row_per_day(self, db):
        recorder = EventRecorder(db)
        run_async(recorder.track_page_view({"sessionId": "S1", "timestamp": "2024-03-01T10:00:00Z"}))
        run_async(recorder.track_page_view({"sessionId": "S1", "timestamp": "2024-03-02T10:00:00Z"}))

        rows = run_async(recorder.rollups.rows_in_range(None))
        assert [r.date for r in rows] == [date(2024, 3, 1), date(2024, 3, 2)]
        assert [r.page_views for r in rows] == [1, 1]


class TestTimestampEdges:
    """Test timestamps at the limits of the calendar."""

    def test_out_of_range_timestamp_falls_back_to_now(self, db):
        """An offset that overflows the calendar counts as no timestamp."""
        recorder = EventRecorder(db)
        before = utc_now()
        run_async(recorder.track_page_view({
            "sessionId": "S1",
            "timestamp": "0001-01-01T00:00:00+01:00",
        }))

        stored = _rows(db, "SELECT timestamp FROM page_views")[0]["timestamp"]
        assert parse_timestamp(stored) >= before.replace(microsecond=0)
        today = TimeRange(gte=before, lte=utc_now())
        assert run_async(recorder.rollups.sum_range(Metric.PAGE_VIEWS, today)) == 1

    def test_short_year_agrees_between_rollup_and_raw_rows(self, db):
        recorder = EventRecorder(db)
        run_async(recorder.track_page_view({
            "sessionId": "S1",
            "path": "/old",
            "timestamp": "0999-06-01T10:00:00Z",
        }))
        day = TimeRange(
            gte=datetime(999, 6, 1, tzinfo=timezone.utc),
            lte=datetime(999, 6, 1, 23, tzinfo=timezone.utc),
        )
        client = AnalyticsClient(db, recorder.rollups)

        assert _rows(db, "SELECT timestamp FROM page_views") == [{"timestamp": "0999-06-01T10:00:00.000Z"}]
        assert run_async(client.get_count(Metric.PAGE_VIEWS, day)) == 1
        pages = run_async(client.get_report_pages(day))
        assert [p.to_json() for p in pages] == [{"path": "/old", "views": 1}]
