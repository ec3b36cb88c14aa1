"""
Visits component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .models import TimeWindow, VisitEvent


class VisitStorePort(Protocol):
    """
    Append-only store of visit events.

    Implementations raise StoreUnavailableError when the backing store fails.
    """

    def insert(self, event: VisitEvent) -> int:
        """Persist a new event. Returns the assigned id."""
        ...

    def patch(self, event_id: int, status_code: int, response_time_ms: int) -> bool:
        """Fill response metadata once. Returns False if missing or already patched."""
        ...

    def get_by_id(self, event_id: int) -> VisitEvent | None:
        """Get a single event."""
        ...

    def find_latest_by_ip(self, ip_address: str) -> VisitEvent | None:
        """Most recent event for an IP (point read)."""
        ...

    def count_visits(self, window: TimeWindow) -> int:
        """Number of events in the window."""
        ...

    def count_distinct(self, field_name: str, window: TimeWindow) -> int:
        """Number of distinct non-null values of a field in the window."""
        ...

    def count_new_visitors(self, window: TimeWindow) -> int:
        """Number of events flagged as new visitors in the window."""
        ...

    def group_count(self, field_name: str, window: TimeWindow) -> list[tuple[str | None, int]]:
        """Counts grouped by a field, unordered."""
        ...

    def average_response_time(self, window: TimeWindow) -> float | None:
        """Mean of non-null response times, None if there are none."""
        ...

    def count_status_at_least(self, threshold: int, window: TimeWindow) -> int:
        """Number of events whose status code is >= threshold."""
        ...

    def list_recent(self, limit: int) -> list[VisitEvent]:
        """Most recent events, newest first."""
        ...

    def list_by_session(self, session_id: str) -> list[VisitEvent]:
        """Events sharing a session id, newest first."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...


class CancellationPort(Protocol):
    """Cooperative cancellation signal for multi-query calls."""

    def is_cancelled(self) -> bool:
        """Check if the caller has abandoned the call."""
        ...


class RulesPort(Protocol):
    """Port for visit analytics rules configuration."""

    def get_timezone(self) -> str:
        """IANA timezone used for calendar-day boundaries."""
        ...

    def get_new_visitor_window_days(self) -> int:
        """Days after which a returning IP counts as new again."""
        ...

    def get_default_range_days(self) -> int:
        """Default lookback for breakdown queries."""
        ...

    def get_trend_limits(self) -> dict[str, int]:
        """Trend day limits (min_days, max_days, default_days)."""
        ...

    def get_top_pages_limits(self) -> dict[str, int]:
        """Top pages limit bounds (min_limit, max_limit, default_limit)."""
        ...

    def get_error_status_threshold(self) -> int:
        """Lowest status code counted as an error."""
        ...

    def get_session_config(self) -> dict[str, str | int]:
        """Session id scheme (scheme, bucket_minutes)."""
        ...

    def derive_traffic_source(self) -> bool:
        """Check if traffic source should be derived when not supplied."""
        ...
