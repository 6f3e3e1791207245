"""Tests for the SQLite and D1 storage backends."""

import asyncio
import json

import httpx
import pytest

from beacon_analytics.core.errors import StorageError
from beacon_analytics.core.storage import D1Database, SQLiteDatabase


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class TestSQLiteDatabase:
    """Test the local SQLite backend."""

    def test_memory_path_rejected(self):
        with pytest.raises(ValueError):
            SQLiteDatabase(":memory:")

    def test_init_schema_is_idempotent(self, db):
        run_async(db.init_schema())
        tables = run_async(db.query("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"))
        names = {row["name"] for row in tables}
        assert {"sessions", "page_views", "pings", "clicks", "goals", "daily_stats",
                "admin_users", "admin_sessions"} <= names

    def test_creates_parent_directory(self, tmp_path):
        database = SQLiteDatabase(tmp_path / "nested" / "dir" / "analytics.db")
        run_async(database.init_schema())
        assert (tmp_path / "nested" / "dir" / "analytics.db").exists()

    def test_batch_returns_rows_per_statement(self, db):
        results = run_async(db.batch([
            ("INSERT INTO daily_stats (date, clicks, created_at, updated_at) VALUES (?, 3, 'x', 'x')", ["2024-03-01"]),
            ("SELECT clicks FROM daily_stats WHERE date = ?", ["2024-03-01"]),
        ]))
        assert results == [[], [{"clicks": 3}]]

    def test_batch_rolls_back_on_error(self, db):
        with pytest.raises(StorageError):
            run_async(db.batch([
                ("INSERT INTO daily_stats (date, created_at, updated_at) VALUES ('2024-03-01', 'x', 'x')", []),
                ("INSERT INTO no_such_table VALUES (1)", []),
            ]))

        assert run_async(db.query("SELECT COUNT(*) as n FROM daily_stats")) == [{"n": 0}]

    def test_query_error_wrapped(self, db):
        with pytest.raises(StorageError, match="SQLite query failed"):
            run_async(db.query("SELECT * FROM no_such_table"))


class TestD1Database:
    """Test the Cloudflare D1 backend against a mock transport."""

    def _database(self, handler):
        return D1Database(
            d1_database_id="test-db",
            cf_account_id="test-account",
            cf_api_token="test-token",
            transport=httpx.MockTransport(handler),
        )

    def test_query_posts_sql_and_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True,
                "result": [{"results": [{"total": 4}], "success": True}],
            })

        rows = run_async(self._database(handler).query("SELECT ? as total", [4]))

        assert rows == [{"total": 4}]
        assert seen["url"] == (
            "https://api.cloudflare.com/client/v4/accounts/test-account/d1/database/test-db/query"
        )
        assert seen["auth"] == "Bearer test-token"
        assert seen["body"] == {"sql": "SELECT ? as total", "params": [4]}

    def test_batch_uses_batch_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True,
                "result": [{"results": []}, {"results": [{"date": "2024-03-01"}]}],
            })

        results = run_async(self._database(handler).batch([
            ("UPDATE a SET b = ?", [1]),
            ("SELECT date FROM daily_stats", []),
        ]))

        assert results == [[], [{"date": "2024-03-01"}]]
        assert seen["body"] == {"batch": [
            {"sql": "UPDATE a SET b = ?", "params": [1]},
            {"sql": "SELECT date FROM daily_stats", "params": []},
        ]}

    def test_unsuccessful_response_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "errors": [{"message": "no such table"}]})

        with pytest.raises(StorageError, match="no such table"):
            run_async(self._database(handler).query("SELECT 1"))

    def test_http_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"success": False})

        with pytest.raises(StorageError, match="D1 request failed"):
            run_async(self._database(handler).query("SELECT 1"))

    def test_empty_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True, "result": []})

        assert run_async(self._database(handler).query("SELECT 1")) == []
