"""
SQLite Visit Store Adapter.

Implements VisitStorePort over the visit_logs table.
Designed to be Postgres-compatible (uses standard SQL patterns).

Timestamps are stored as UTC ISO-8601 text with fixed microsecond precision,
so lexical comparison matches chronological order.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from src.components.visits import (
    StoreUnavailableError,
    TimeWindow,
    VisitEvent,
    check_groupable,
)

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def format_dt(dt: datetime) -> str:
    """Format a datetime as sortable UTC ISO text."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s) if s else None


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection
        if connection is not None:
            connection.row_factory = dict_factory

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        return conn

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Connection scope that commits on success and maps driver errors."""
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open visit store: {e}") from e

        try:
            yield conn
            if self._should_close():
                conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Visit store query failed: {e}") from e
        finally:
            if self._should_close():
                conn.close()


# -----------------------------------------------------------------------------
# Visit Store
# -----------------------------------------------------------------------------


class SQLiteVisitStore(SQLiteRepoBase):
    """SQLite implementation of VisitStorePort."""

    _WINDOW = "visit_time >= ? AND visit_time < ?"

    def _window_params(self, window: TimeWindow) -> tuple[str, str]:
        return format_dt(window.start), format_dt(window.end)

    def insert(self, event: VisitEvent) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO visit_logs (
                    ip_address, user_agent, referer, url, http_method,
                    visit_time, user_id, session_id, device_type,
                    operating_system, browser, traffic_source,
                    page_stay_time_sec, is_new_visitor, status_code,
                    response_time_ms
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.ip_address,
                    event.user_agent,
                    event.referer,
                    event.url,
                    event.http_method,
                    format_dt(event.visit_time),
                    event.user_id,
                    event.session_id,
                    event.device_type,
                    event.operating_system,
                    event.browser,
                    event.traffic_source,
                    event.page_stay_time_sec,
                    1 if event.is_new_visitor else 0,
                    event.status_code,
                    event.response_time_ms,
                ),
            )
            event_id = cursor.lastrowid
        if event_id is None:
            raise StoreUnavailableError("Visit store did not assign an id")
        return event_id

    def patch(self, event_id: int, status_code: int, response_time_ms: int) -> bool:
        with self._session() as conn:
            cursor = conn.execute(
                """
                UPDATE visit_logs
                SET status_code = ?, response_time_ms = ?
                WHERE id = ? AND status_code IS NULL AND response_time_ms IS NULL
                """,
                (status_code, response_time_ms, event_id),
            )
            return cursor.rowcount == 1

    def get_by_id(self, event_id: int) -> VisitEvent | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM visit_logs WHERE id = ?", (event_id,)).fetchone()
        return self._map_row(row) if row else None

    def find_latest_by_ip(self, ip_address: str) -> VisitEvent | None:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT * FROM visit_logs
                WHERE ip_address = ?
                ORDER BY visit_time DESC, id DESC
                LIMIT 1
                """,
                (ip_address,),
            ).fetchone()
        return self._map_row(row) if row else None

    def count_visits(self, window: TimeWindow) -> int:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM visit_logs WHERE {self._WINDOW}",
                self._window_params(window),
            ).fetchone()
        return int(row["n"])

    def count_distinct(self, field_name: str, window: TimeWindow) -> int:
        check_groupable(field_name)
        with self._session() as conn:
            row = conn.execute(
                f"SELECT COUNT(DISTINCT {field_name}) AS n FROM visit_logs WHERE {self._WINDOW}",
                self._window_params(window),
            ).fetchone()
        return int(row["n"])

    def count_new_visitors(self, window: TimeWindow) -> int:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM visit_logs WHERE is_new_visitor = 1 AND {self._WINDOW}",
                self._window_params(window),
            ).fetchone()
        return int(row["n"])

    def group_count(self, field_name: str, window: TimeWindow) -> list[tuple[str | None, int]]:
        check_groupable(field_name)
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT {field_name} AS k, COUNT(*) AS n FROM visit_logs
                WHERE {self._WINDOW}
                GROUP BY {field_name}
                """,
                self._window_params(window),
            ).fetchall()
        return [(row["k"], int(row["n"])) for row in rows]

    def average_response_time(self, window: TimeWindow) -> float | None:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT AVG(response_time_ms) AS avg_ms FROM visit_logs WHERE {self._WINDOW}",
                self._window_params(window),
            ).fetchone()
        return float(row["avg_ms"]) if row["avg_ms"] is not None else None

    def count_status_at_least(self, threshold: int, window: TimeWindow) -> int:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM visit_logs WHERE status_code >= ? AND {self._WINDOW}",
                (threshold, *self._window_params(window)),
            ).fetchone()
        return int(row["n"])

    def list_recent(self, limit: int) -> list[VisitEvent]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM visit_logs ORDER BY visit_time DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._map_row(r) for r in rows]

    def list_by_session(self, session_id: str) -> list[VisitEvent]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM visit_logs
                WHERE session_id = ?
                ORDER BY visit_time DESC, id DESC
                """,
                (session_id,),
            ).fetchall()
        return [self._map_row(r) for r in rows]

    def _map_row(self, row: dict[str, Any]) -> VisitEvent:
        visit_time = parse_dt(row["visit_time"])
        assert visit_time is not None
        return VisitEvent(
            id=row["id"],
            ip_address=row["ip_address"],
            url=row["url"],
            visit_time=visit_time,
            session_id=row["session_id"],
            is_new_visitor=bool(row["is_new_visitor"]),
            device_type=row["device_type"],
            operating_system=row["operating_system"],
            browser=row["browser"],
            http_method=row["http_method"],
            user_agent=row["user_agent"],
            referer=row["referer"],
            user_id=row["user_id"],
            traffic_source=row["traffic_source"],
            page_stay_time_sec=row["page_stay_time_sec"],
            status_code=row["status_code"],
            response_time_ms=row["response_time_ms"],
        )
