"""
SQL storage backends.

Both backends expose the same coroutine, `query(sql, params) -> list[dict]`,
and speak the SQLite dialect: Cloudflare D1 over its HTTP API in production,
a local SQLite file (or ":memory:") for development and tests.

Timestamps are stored as ISO-8601 UTC strings with a fixed width, so string
comparison orders them chronologically.
"""
import asyncio
import logging
import sqlite3
import threading
from datetime import datetime, timezone

import httpx

from ..errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL UNIQUE,
        visitor_id TEXT NOT NULL,
        device_fingerprint TEXT NOT NULL,
        ip_address TEXT NOT NULL,
        user_agent TEXT NOT NULL,
        country TEXT,
        region TEXT,
        city TEXT,
        location_timezone TEXT,
        latitude REAL,
        longitude REAL,
        device_type TEXT NOT NULL,
        browser TEXT NOT NULL,
        browser_version TEXT,
        os TEXT NOT NULL,
        os_version TEXT,
        is_mobile INTEGER NOT NULL DEFAULT 0,
        is_tablet INTEGER NOT NULL DEFAULT 0,
        is_desktop INTEGER NOT NULL DEFAULT 0,
        screen_width INTEGER,
        screen_height INTEGER,
        color_depth INTEGER,
        language TEXT NOT NULL,
        timezone TEXT NOT NULL,
        referrer TEXT,
        first_visit TEXT NOT NULL,
        last_activity TEXT NOT NULL,
        page_views INTEGER NOT NULL DEFAULT 0,
        total_duration INTEGER NOT NULL DEFAULT 0,
        is_returning_visitor INTEGER NOT NULL DEFAULT 0,
        source TEXT,
        medium TEXT,
        campaign TEXT,
        term TEXT,
        content TEXT,
        exit_page TEXT,
        bounced INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_fingerprint ON sessions (device_fingerprint, last_activity)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_visitor ON sessions (visitor_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_first_visit ON sessions (first_visit)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_last_activity ON sessions (last_activity)",
    """
    CREATE TABLE IF NOT EXISTS page_views (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        visitor_id TEXT NOT NULL,
        page TEXT NOT NULL,
        title TEXT,
        referrer TEXT,
        timestamp TEXT NOT NULL,
        duration INTEGER,
        scroll_depth INTEGER,
        country TEXT,
        region TEXT,
        city TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT,
        is_mobile INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_page_views_timestamp ON page_views (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_visitor ON page_views (visitor_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_session ON page_views (session_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        visitor_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        event_category TEXT NOT NULL,
        event_action TEXT NOT NULL,
        event_label TEXT,
        event_value REAL,
        page TEXT,
        timestamp TEXT NOT NULL,
        metadata TEXT,
        country TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_events_visitor ON events (visitor_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS form_submissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        visitor_id TEXT NOT NULL,
        form_id TEXT NOT NULL,
        form_name TEXT NOT NULL,
        success INTEGER NOT NULL,
        fields TEXT,
        completion_time INTEGER,
        page TEXT,
        timestamp TEXT NOT NULL,
        country TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_form_submissions_visitor ON form_submissions (visitor_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS errors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        visitor_id TEXT NOT NULL,
        error_type TEXT NOT NULL,
        error_message TEXT NOT NULL,
        error_stack TEXT,
        page TEXT,
        user_action TEXT,
        severity TEXT NOT NULL DEFAULT 'medium',
        timestamp TEXT NOT NULL,
        country TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_errors_visitor ON errors (visitor_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS performance_metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        visitor_id TEXT NOT NULL,
        metric_type TEXT NOT NULL,
        metric_name TEXT NOT NULL,
        value REAL NOT NULL,
        page TEXT,
        timestamp TEXT NOT NULL,
        additional_data TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_performance_metrics_visitor ON performance_metrics (visitor_id, timestamp)",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Format a datetime as a fixed-width UTC string.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class Database:
    """SQL query interface shared by the storage backends."""

    async def query(self, sql: str, params: list | None = None) -> list[dict]:
        raise NotImplementedError

    async def ensure_schema(self) -> None:
        """Create tables and indexes if they are missing."""
        for statement in SCHEMA_STATEMENTS:
            await self.query(statement)


class D1Database(Database):
    """Cloudflare D1 over the REST query endpoint."""

    def __init__(
        self,
        d1_database_id: str,
        cf_account_id: str,
        cf_api_token: str,
        timeout: float = 30.0,
    ):
        self.database_id = d1_database_id
        self.account_id = cf_account_id
        self.api_token = cf_api_token
        self.timeout = timeout
        self.base_url = f"https://api.cloudflare.com/client/v4/accounts/{cf_account_id}/d1/database/{d1_database_id}"

    async def query(self, sql: str, params: list | None = None) -> list[dict]:
        """Execute a SQL statement against D1."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/query",
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json={"sql": sql, "params": params or []},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StorageError(f"D1 request failed: {exc}") from exc

        if not data.get("success"):
            raise StorageError(f"D1 query failed: {data.get('errors')}")

        results = data.get("result", [])
        if results and len(results) > 0:
            return results[0].get("results", [])
        return []


class SQLiteDatabase(Database):
    """Local SQLite storage.

    One connection is shared by all requests; a lock serialises statements,
    which run in a worker thread so the event loop never blocks on disk.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        for statement in SCHEMA_STATEMENTS:
            self._run(statement, [])

    def _run(self, sql: str, params: list) -> list[dict]:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
                self._conn.commit()
            except (sqlite3.Error, OverflowError) as exc:
                self._conn.rollback()
                raise StorageError(f"SQLite query failed: {exc}") from exc
        return rows

    async def query(self, sql: str, params: list | None = None) -> list[dict]:
        return await asyncio.to_thread(self._run, sql, list(params or []))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
