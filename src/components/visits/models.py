"""
Visits component input/output models.

Covers the visit record itself, the component inputs for the write and read
paths, and the outputs returned to the boundary layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal

# --- Errors ---


class VisitsError(Exception):
    """Base error for the visits component."""


class StoreUnavailableError(VisitsError):
    """Raised when the visit store cannot be read or written."""


class QueryCancelledError(VisitsError):
    """Raised when a multi-query call is cancelled or passes its deadline."""


@dataclass(frozen=True)
class VisitsValidationError:
    """Visits validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Enums ---


DeviceType = Literal["desktop", "mobile", "tablet", "unknown"]
BreakdownDimension = Literal["device_type", "browser", "operating_system", "traffic_source"]


# --- Time Window ---


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time interval [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            msg = f"Window start {self.start.isoformat()} is after end {self.end.isoformat()}"
            raise ValueError(msg)

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    @classmethod
    def last_days(cls, now: datetime, days: int) -> TimeWindow:
        """Window covering the last `days` days up to `now`."""
        return cls(start=now - timedelta(days=days), end=now)


# --- Visit Event Model ---


@dataclass(frozen=True)
class VisitEvent:
    """
    One classified record of a single inbound request.

    Derived fields are computed once at creation. Only status_code and
    response_time_ms are filled in later, by the request that created it.
    """

    ip_address: str
    url: str
    visit_time: datetime
    session_id: str
    is_new_visitor: bool
    device_type: DeviceType = "unknown"
    operating_system: str | None = None
    browser: str | None = None
    http_method: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    user_id: int | None = None
    traffic_source: str | None = None
    page_stay_time_sec: int | None = None
    status_code: int | None = None
    response_time_ms: int | None = None
    id: int | None = None


# --- Input Models ---


@dataclass(frozen=True)
class RecordVisitInput:
    """Input for recording an inbound request."""

    url: str
    query_string: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    peer_address: str | None = None
    http_method: str | None = None
    user_id: int | None = None
    traffic_source: str | None = None
    page_stay_time_sec: int | None = None


@dataclass(frozen=True)
class CompleteResponseInput:
    """Input for completing a recorded request with response metadata."""

    handle: int | None
    status_code: int
    elapsed_ms: int


@dataclass(frozen=True)
class QueryOverviewInput:
    """Input for the overview query."""


@dataclass(frozen=True)
class QueryRealtimeInput:
    """Input for the realtime query."""


@dataclass(frozen=True)
class QueryTrendInput:
    """Input for the daily trend query."""

    days: int | None = None


@dataclass(frozen=True)
class QueryBreakdownInput:
    """Input for a grouped breakdown over a window."""

    dimension: BreakdownDimension
    start_time: datetime | None = None
    end_time: datetime | None = None


@dataclass(frozen=True)
class QueryWindowInput:
    """Input for a named breakdown (devices, browsers, ...) over a window."""

    start_time: datetime | None = None
    end_time: datetime | None = None


@dataclass(frozen=True)
class QueryTopPagesInput:
    """Input for the top pages query."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int | None = None


@dataclass(frozen=True)
class QueryPerformanceInput:
    """Input for the performance query."""

    start_time: datetime | None = None
    end_time: datetime | None = None


@dataclass(frozen=True)
class QueryRecentVisitsInput:
    """Input for listing the most recent visits."""

    limit: int = 100


@dataclass(frozen=True)
class QuerySessionVisitsInput:
    """Input for listing the visits of one session."""

    session_id: str


# --- Output Models ---


@dataclass(frozen=True)
class RecordVisitOutput:
    """Output for recording. handle is None when nothing was stored."""

    handle: int | None
    recorded: bool
    event: VisitEvent | None = None


@dataclass(frozen=True)
class CompleteResponseOutput:
    """Output for response completion."""

    patched: bool


@dataclass(frozen=True)
class OverviewStats:
    """Today/yesterday/week/month totals."""

    today_visits: int
    today_unique_visitors: int
    today_sessions: int
    today_new_visitors: int
    yesterday_visits: int
    yesterday_unique_visitors: int
    week_visits: int
    week_unique_visitors: int
    month_visits: int
    month_unique_visitors: int
    visit_growth_rate: float
    visitor_growth_rate: float


@dataclass(frozen=True)
class OverviewOutput:
    """Output for the overview query."""

    overview: OverviewStats
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class DailyStats:
    """Single day in a trend series."""

    date: str
    visits: int
    unique_visitors: int
    sessions: int
    new_visitors: int


@dataclass(frozen=True)
class TrendOutput:
    """Output for the trend query."""

    days: tuple[DailyStats, ...]
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class CountItem:
    """Single group in a breakdown; key is None for unclassified rows."""

    key: str | None
    count: int


@dataclass(frozen=True)
class BreakdownOutput:
    """Output for a grouped breakdown."""

    dimension: BreakdownDimension
    items: tuple[CountItem, ...]
    window: TimeWindow | None = None
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class TopPagesOutput:
    """Output for the top pages query."""

    pages: tuple[CountItem, ...]
    window: TimeWindow | None = None
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class PerformanceOutput:
    """Output for the performance query."""

    avg_response_time_ms: float
    error_rate: float
    window: TimeWindow | None = None
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class RealtimeOutput:
    """Output for the realtime query."""

    overview: OverviewStats
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class VisitListOutput:
    """Output for visit listings (recent, by session)."""

    visits: tuple[VisitEvent, ...]
    errors: list[VisitsValidationError] = field(default_factory=list)
    success: bool = True
