"""
Visit Statistics API.

Read-only dashboard endpoints over the recorded visits. Every call recomputes
its figures from the store.

Status codes:
- 400: invalid date, days or limit
- 503: visit store unavailable
- 504: trend query passed its deadline
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from src.adapters.clock import SystemClock
from src.adapters.sqlite_db import SQLiteVisitStore
from src.api.deps import VisitRulesAdapter, get_clock, get_visit_rules, get_visit_store
from src.components.visits import (
    BreakdownOutput,
    Calendar,
    CountItem,
    Deadline,
    OverviewStats,
    QueryCancelledError,
    QueryOverviewInput,
    QueryPerformanceInput,
    QueryRealtimeInput,
    QueryRecentVisitsInput,
    QuerySessionVisitsInput,
    QueryTopPagesInput,
    QueryTrendInput,
    QueryWindowInput,
    StoreUnavailableError,
    TimeWindow,
    VisitEvent,
    VisitsValidationError,
    run_browser_stats,
    run_device_stats,
    run_os_stats,
    run_overview,
    run_performance,
    run_realtime,
    run_recent_visits,
    run_session_visits,
    run_top_pages,
    run_traffic_source_stats,
    run_trend,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Response Models ---


class OverviewResponse(BaseModel):
    """Overview response model."""

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


class DailyStatsItem(BaseModel):
    """Single trend day."""

    date: str
    visits: int
    unique_visitors: int
    sessions: int
    new_visitors: int


class TrendResponse(BaseModel):
    """Trend response model."""

    days: list[DailyStatsItem]


class CountItemResponse(BaseModel):
    """Grouped count. key is null for unclassified visits."""

    key: str | None
    count: int


class BreakdownResponse(BaseModel):
    """Breakdown response model."""

    dimension: str
    start: str
    end: str
    items: list[CountItemResponse]


class PageCount(BaseModel):
    """Top page item."""

    url: str
    count: int


class TopPagesResponse(BaseModel):
    """Top pages response model."""

    start: str
    end: str
    pages: list[PageCount]


class PerformanceResponse(BaseModel):
    """Performance response model."""

    start: str
    end: str
    avg_response_time_ms: float
    error_rate: float


class RealtimeResponse(BaseModel):
    """Realtime response model."""

    overview: OverviewResponse
    last_updated: str


class VisitItem(BaseModel):
    """Single recorded visit."""

    id: int | None
    ip_address: str
    url: str
    http_method: str | None
    visit_time: str
    session_id: str
    is_new_visitor: bool
    device_type: str
    operating_system: str | None
    browser: str | None
    referer: str | None
    traffic_source: str | None
    status_code: int | None
    response_time_ms: int | None


class VisitListResponse(BaseModel):
    """Visit list response model."""

    visits: list[VisitItem]


# --- Helper Functions ---


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map component failures to HTTP errors."""
    try:
        yield
    except StoreUnavailableError as e:
        logger.error("Visit store unavailable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Visit store unavailable",
        ) from e
    except QueryCancelledError as e:
        logger.warning("Visit query abandoned: %s", e)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Query timed out",
        ) from e


def raise_for_errors(errors: list[VisitsValidationError]) -> None:
    if errors:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=[
                {"code": e.code, "message": e.message, "field": e.field_name} for e in errors
            ],
        )


def parse_date(value: str, field_name: str) -> date:
    """Parse YYYY-MM-DD."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {field_name}: {value}. Expected YYYY-MM-DD",
        ) from None


def date_range(
    start_date: str | None,
    end_date: str | None,
    rules: VisitRulesAdapter,
) -> tuple[datetime | None, datetime | None]:
    """
    Convert a date range to window bounds in the configured timezone.

    end_date is inclusive, so the window ends at the following midnight.
    """
    calendar = Calendar(rules.get_timezone())
    start = calendar.start_of(parse_date(start_date, "start_date")) if start_date else None
    end = (
        calendar.start_of(parse_date(end_date, "end_date") + timedelta(days=1))
        if end_date
        else None
    )
    return start, end


def to_overview_response(stats: OverviewStats) -> OverviewResponse:
    return OverviewResponse(
        today_visits=stats.today_visits,
        today_unique_visitors=stats.today_unique_visitors,
        today_sessions=stats.today_sessions,
        today_new_visitors=stats.today_new_visitors,
        yesterday_visits=stats.yesterday_visits,
        yesterday_unique_visitors=stats.yesterday_unique_visitors,
        week_visits=stats.week_visits,
        week_unique_visitors=stats.week_unique_visitors,
        month_visits=stats.month_visits,
        month_unique_visitors=stats.month_unique_visitors,
        visit_growth_rate=round(stats.visit_growth_rate, 2),
        visitor_growth_rate=round(stats.visitor_growth_rate, 2),
    )


def to_visit_item(event: VisitEvent) -> VisitItem:
    return VisitItem(
        id=event.id,
        ip_address=event.ip_address,
        url=event.url,
        http_method=event.http_method,
        visit_time=event.visit_time.isoformat(),
        session_id=event.session_id,
        is_new_visitor=event.is_new_visitor,
        device_type=event.device_type,
        operating_system=event.operating_system,
        browser=event.browser,
        referer=event.referer,
        traffic_source=event.traffic_source,
        status_code=event.status_code,
        response_time_ms=event.response_time_ms,
    )


def window_bounds(window: TimeWindow | None) -> tuple[str, str]:
    assert window is not None
    return window.start.isoformat(), window.end.isoformat()


def to_count_items(items: tuple[CountItem, ...]) -> list[CountItemResponse]:
    return [CountItemResponse(key=i.key, count=i.count) for i in items]


def breakdown(
    runner: Callable[..., BreakdownOutput],
    start_date: str | None,
    end_date: str | None,
    store: SQLiteVisitStore,
    rules: VisitRulesAdapter,
    clock: SystemClock,
) -> BreakdownResponse:
    start, end = date_range(start_date, end_date, rules)
    with translate_errors():
        result = runner(
            QueryWindowInput(start_time=start, end_time=end),
            store=store,
            time_port=clock,
            rules=rules,
        )
    raise_for_errors(result.errors)

    window_start, window_end = window_bounds(result.window)
    return BreakdownResponse(
        dimension=result.dimension,
        start=window_start,
        end=window_end,
        items=to_count_items(result.items),
    )


# --- Routes ---


@router.get("/overview", response_model=OverviewResponse)
def get_overview(
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> OverviewResponse:
    """Today, yesterday, this week and this month."""
    with translate_errors():
        result = run_overview(QueryOverviewInput(), store=store, time_port=clock, rules=rules)
    return to_overview_response(result.overview)


@router.get("/trend", response_model=TrendResponse)
def get_trend(
    days: int | None = Query(None, description="Number of days, ending today"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> TrendResponse:
    """Daily visits, visitors, sessions and new visitors, oldest first."""
    deadline = Deadline.after(rules.get_query_timeout_seconds(), clock)
    with translate_errors():
        result = run_trend(
            QueryTrendInput(days=days),
            store=store,
            time_port=clock,
            rules=rules,
            cancellation=deadline,
        )
    raise_for_errors(result.errors)

    return TrendResponse(
        days=[
            DailyStatsItem(
                date=d.date,
                visits=d.visits,
                unique_visitors=d.unique_visitors,
                sessions=d.sessions,
                new_visitors=d.new_visitors,
            )
            for d in result.days
        ]
    )


@router.get("/devices", response_model=BreakdownResponse)
def get_devices(
    start_date: str | None = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Last day, inclusive (YYYY-MM-DD)"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> BreakdownResponse:
    """Visits by device type."""
    return breakdown(run_device_stats, start_date, end_date, store, rules, clock)


@router.get("/browsers", response_model=BreakdownResponse)
def get_browsers(
    start_date: str | None = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Last day, inclusive (YYYY-MM-DD)"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> BreakdownResponse:
    """Visits by browser."""
    return breakdown(run_browser_stats, start_date, end_date, store, rules, clock)


@router.get("/operating-systems", response_model=BreakdownResponse)
def get_operating_systems(
    start_date: str | None = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Last day, inclusive (YYYY-MM-DD)"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> BreakdownResponse:
    """Visits by operating system."""
    return breakdown(run_os_stats, start_date, end_date, store, rules, clock)


@router.get("/traffic-sources", response_model=BreakdownResponse)
def get_traffic_sources(
    start_date: str | None = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Last day, inclusive (YYYY-MM-DD)"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> BreakdownResponse:
    """Visits by traffic source."""
    return breakdown(run_traffic_source_stats, start_date, end_date, store, rules, clock)


@router.get("/top-pages", response_model=TopPagesResponse)
def get_top_pages(
    start_date: str | None = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Last day, inclusive (YYYY-MM-DD)"),
    limit: int | None = Query(None, description="Number of pages"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> TopPagesResponse:
    """Most visited URLs."""
    start, end = date_range(start_date, end_date, rules)
    with translate_errors():
        result = run_top_pages(
            QueryTopPagesInput(start_time=start, end_time=end, limit=limit),
            store=store,
            time_port=clock,
            rules=rules,
        )
    raise_for_errors(result.errors)

    window_start, window_end = window_bounds(result.window)
    return TopPagesResponse(
        start=window_start,
        end=window_end,
        pages=[PageCount(url=p.key or "", count=p.count) for p in result.pages],
    )


@router.get("/performance", response_model=PerformanceResponse)
def get_performance(
    start_date: str | None = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Last day, inclusive (YYYY-MM-DD)"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> PerformanceResponse:
    """Average response time (ms) and error rate (%)."""
    start, end = date_range(start_date, end_date, rules)
    with translate_errors():
        result = run_performance(
            QueryPerformanceInput(start_time=start, end_time=end),
            store=store,
            time_port=clock,
            rules=rules,
        )
    raise_for_errors(result.errors)

    window_start, window_end = window_bounds(result.window)
    return PerformanceResponse(
        start=window_start,
        end=window_end,
        avg_response_time_ms=round(result.avg_response_time_ms, 2),
        error_rate=round(result.error_rate, 2),
    )


@router.get("/realtime", response_model=RealtimeResponse)
def get_realtime(
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> RealtimeResponse:
    """Overview recomputed now."""
    with translate_errors():
        result = run_realtime(QueryRealtimeInput(), store=store, time_port=clock, rules=rules)
    return RealtimeResponse(
        overview=to_overview_response(result.overview),
        last_updated=result.last_updated.isoformat(),
    )


@router.get("/recent", response_model=VisitListResponse)
def get_recent(
    limit: int = Query(100, description="Number of visits"),
    store: SQLiteVisitStore = Depends(get_visit_store),
    rules: VisitRulesAdapter = Depends(get_visit_rules),
    clock: SystemClock = Depends(get_clock),
) -> VisitListResponse:
    """Most recent visits, newest first."""
    with translate_errors():
        result = run_recent_visits(
            QueryRecentVisitsInput(limit=limit), store=store, time_port=clock, rules=rules
        )
    raise_for_errors(result.errors)
    return VisitListResponse(visits=[to_visit_item(v) for v in result.visits])


@router.get("/sessions/{session_id}", response_model=VisitListResponse)
def get_session(
    session_id: str,
    store: SQLiteVisitStore = Depends(get_visit_store),
) -> VisitListResponse:
    """All visits in one session, newest first."""
    with translate_errors():
        result = run_session_visits(QuerySessionVisitsInput(session_id=session_id), store=store)
    return VisitListResponse(visits=[to_visit_item(v) for v in result.visits])
