"""
Storage backends for raw events, rollups and admin sessions.

Both backends speak the SQLite dialect:

- ``SQLiteDatabase``: a local database file, one short-lived connection per
  operation on a worker thread.
- ``D1Database``: Cloudflare D1 over its HTTP query API.

Every backend offers ``query`` for single statements and ``batch`` for a
list of statements applied atomically (all or nothing).
"""
import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from .errors import StorageError

logger = logging.getLogger(__name__)

Statement = tuple[str, list]

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        start_time TEXT NOT NULL,
        last_ping_time TEXT NOT NULL,
        duration INTEGER NOT NULL DEFAULT 0,
        user_agent TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT,
        country TEXT,
        city TEXT,
        ip_address TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS page_views (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        path TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        duration INTEGER NOT NULL DEFAULT 0,
        page_path TEXT,
        timestamp TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS clicks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        element_tag TEXT,
        element_id TEXT,
        element_class TEXT,
        element_text TEXT,
        x INTEGER NOT NULL DEFAULT 0,
        y INTEGER NOT NULL DEFAULT 0,
        page_path TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS goals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT REFERENCES sessions(id) ON DELETE SET NULL,
        name TEXT NOT NULL,
        value REAL,
        path TEXT,
        timestamp TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_stats (
        date TEXT PRIMARY KEY,
        sessions INTEGER NOT NULL DEFAULT 0,
        page_views INTEGER NOT NULL DEFAULT 0,
        pings INTEGER NOT NULL DEFAULT 0,
        clicks INTEGER NOT NULL DEFAULT 0,
        goals INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_sessions (
        token_hash TEXT PRIMARY KEY,
        admin_user_id INTEGER NOT NULL REFERENCES admin_users(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS sessions_start_time_idx ON sessions(start_time)",
    "CREATE INDEX IF NOT EXISTS page_views_session_id_idx ON page_views(session_id)",
    "CREATE INDEX IF NOT EXISTS page_views_timestamp_idx ON page_views(timestamp)",
    "CREATE INDEX IF NOT EXISTS pings_session_id_idx ON pings(session_id)",
    "CREATE INDEX IF NOT EXISTS pings_timestamp_idx ON pings(timestamp)",
    "CREATE INDEX IF NOT EXISTS clicks_session_id_idx ON clicks(session_id)",
    "CREATE INDEX IF NOT EXISTS clicks_timestamp_idx ON clicks(timestamp)",
    "CREATE INDEX IF NOT EXISTS goals_session_id_idx ON goals(session_id)",
    "CREATE INDEX IF NOT EXISTS goals_timestamp_idx ON goals(timestamp)",
    "CREATE INDEX IF NOT EXISTS admin_sessions_admin_user_id_idx ON admin_sessions(admin_user_id)",
]


class Database(ABC):
    """Async SQL interface shared by the recorder, rollups and reader."""

    @abstractmethod
    async def query(self, sql: str, params: list | None = None) -> list[dict]:
        """Execute one statement and return its rows as dicts."""

    @abstractmethod
    async def batch(self, statements: list[Statement]) -> list[list[dict]]:
        """Execute statements atomically; returns the rows of each statement."""

    async def execute(self, sql: str, params: list | None = None) -> None:
        """Execute a statement without returning results."""
        await self.query(sql, params)

    async def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        await self.batch([(sql, []) for sql in SCHEMA])
        logger.info(f"Schema ready ({type(self).__name__})")

    async def close(self) -> None:
        """Release backend resources."""
        return None


class SQLiteDatabase(Database):
    """Local SQLite file.

    Each operation opens its own connection on a worker thread, so
    concurrent requests never share a connection. Writes in ``batch`` take
    the database write lock up front (``BEGIN IMMEDIATE``).
    """

    def __init__(self, path: str | Path, busy_timeout: float = 5.0):
        self.path = str(path)
        self.busy_timeout = busy_timeout
        if self.path == ":memory:":
            raise ValueError("SQLiteDatabase needs a file path; ':memory:' is per-connection")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _run_query(self, sql: str, params: list) -> list[dict]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def _run_batch(self, statements: list[Statement]) -> list[list[dict]]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                results = []
                for sql, params in statements:
                    rows = conn.execute(sql, params).fetchall()
                    results.append([dict(row) for row in rows])
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            return results
        finally:
            conn.close()

    async def query(self, sql: str, params: list | None = None) -> list[dict]:
        try:
            return await asyncio.to_thread(self._run_query, sql, list(params or []))
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite query failed: {exc}") from exc

    async def batch(self, statements: list[Statement]) -> list[list[dict]]:
        try:
            return await asyncio.to_thread(self._run_batch, statements)
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite batch failed: {exc}") from exc

    async def init_schema(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        await self.query("PRAGMA journal_mode = WAL")
        await super().init_schema()


class D1Database(Database):
    """Cloudflare D1 accessed through the REST query API."""

    def __init__(
        self,
        d1_database_id: str,
        cf_account_id: str,
        cf_api_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.database_id = d1_database_id
        self.account_id = cf_account_id
        self.api_token = cf_api_token
        self.timeout = timeout
        self._transport = transport
        self.base_url = f"https://api.cloudflare.com/client/v4/accounts/{cf_account_id}/d1/database/{d1_database_id}"

    async def _post(self, body: dict) -> list[dict]:
        """POST to the query endpoint and return the per-statement results."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/query",
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise StorageError(f"D1 request failed: {exc}") from exc

        if not data.get("success"):
            raise StorageError(f"D1 query failed: {data.get('errors')}")

        return data.get("result") or []

    async def query(self, sql: str, params: list | None = None) -> list[dict]:
        results = await self._post({"sql": sql, "params": list(params or [])})
        if results:
            return results[0].get("results") or []
        return []

    async def batch(self, statements: list[Statement]) -> list[list[dict]]:
        # D1 runs a batch body as a single transaction.
        results = await self._post({
            "batch": [{"sql": sql, "params": list(params)} for sql, params in statements]
        })
        return [result.get("results") or [] for result in results]
