"""
Visits component - Request recording and visit analytics queries.

Records each inbound request as a classified visit event and answers
dashboard queries (overview, trend, breakdowns, top pages, performance)
by aggregating the stored events on demand.

Invariants:
- Recording never fails the request it observes
- Response metadata is attached at most once per event
- Validation errors are returned before any store query runs
- Trend series are contiguous and oldest first
"""

from __future__ import annotations

import logging

from ._identity import IdentityConfig, SessionScheme
from ._impl import VisitQueryService, VisitRecorder, VisitsConfig
from .models import (
    BreakdownDimension,
    BreakdownOutput,
    CompleteResponseInput,
    CompleteResponseOutput,
    OverviewOutput,
    PerformanceOutput,
    QueryBreakdownInput,
    QueryOverviewInput,
    QueryPerformanceInput,
    QueryRealtimeInput,
    QueryRecentVisitsInput,
    QuerySessionVisitsInput,
    QueryTopPagesInput,
    QueryTrendInput,
    QueryWindowInput,
    RealtimeOutput,
    RecordVisitInput,
    RecordVisitOutput,
    TopPagesOutput,
    TrendOutput,
    VisitListOutput,
)
from .ports import CancellationPort, RulesPort, TimePort, VisitStorePort

logger = logging.getLogger(__name__)


def _build_config(rules: RulesPort | None) -> VisitsConfig:
    """Build visits config from rules port."""
    if rules is None:
        return VisitsConfig()

    trend = rules.get_trend_limits()
    top_pages = rules.get_top_pages_limits()
    session = rules.get_session_config()

    identity = IdentityConfig(
        new_visitor_window_days=rules.get_new_visitor_window_days(),
        session_scheme=SessionScheme(session.get("scheme", SessionScheme.LITERAL.value)),
        session_bucket_minutes=int(session.get("bucket_minutes", 30)),
    )

    return VisitsConfig(
        timezone=rules.get_timezone(),
        identity=identity,
        default_range_days=rules.get_default_range_days(),
        trend_min_days=trend.get("min_days", 1),
        trend_max_days=trend.get("max_days", 365),
        trend_default_days=trend.get("default_days", 30),
        top_pages_min_limit=top_pages.get("min_limit", 1),
        top_pages_max_limit=top_pages.get("max_limit", 100),
        top_pages_default_limit=top_pages.get("default_limit", 10),
        error_status_threshold=rules.get_error_status_threshold(),
        derive_traffic_source=rules.derive_traffic_source(),
    )


def _query_service(
    store: VisitStorePort,
    time_port: TimePort | None,
    rules: RulesPort | None,
) -> VisitQueryService:
    return VisitQueryService(store=store, time_port=time_port, config=_build_config(rules))


# --- Component Entry Points ---


def run_record(
    inp: RecordVisitInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> RecordVisitOutput:
    """
    Record an inbound request as a visit.

    Never raises; a failed write is reported as recorded=False.

    Args:
        inp: Input containing the request URL, headers and peer address.
        store: Visit store port.
        time_port: Optional time port.
        rules: Optional rules port for configuration.

    Returns:
        RecordVisitOutput with the handle for complete_response.
    """
    try:
        config = _build_config(rules)
    except Exception:
        logger.exception("Visit rules unavailable; request not recorded: url=%s", inp.url)
        return RecordVisitOutput(handle=None, recorded=False)

    recorder = VisitRecorder(store=store, time_port=time_port, config=config)

    handle, event = recorder.record(
        url=inp.url,
        query_string=inp.query_string,
        headers=inp.headers,
        peer_address=inp.peer_address,
        http_method=inp.http_method,
        user_id=inp.user_id,
        traffic_source=inp.traffic_source,
        page_stay_time_sec=inp.page_stay_time_sec,
    )

    return RecordVisitOutput(handle=handle, recorded=handle is not None, event=event)


def run_complete_response(
    inp: CompleteResponseInput,
    *,
    store: VisitStorePort,
) -> CompleteResponseOutput:
    """Attach response status and elapsed time to a recorded visit."""
    recorder = VisitRecorder(store=store)
    patched = recorder.complete_response(inp.handle, inp.status_code, inp.elapsed_ms)
    return CompleteResponseOutput(patched=patched)


def run_overview(
    inp: QueryOverviewInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> OverviewOutput:
    """
    Today, yesterday, this week and this month at a glance.

    Raises:
        StoreUnavailableError: If the store cannot be read.
    """
    service = _query_service(store, time_port, rules)
    return OverviewOutput(overview=service.overview())


def run_realtime(
    inp: QueryRealtimeInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> RealtimeOutput:
    """Overview recomputed now, stamped with the computation time."""
    service = _query_service(store, time_port, rules)
    overview, computed_at = service.realtime()
    return RealtimeOutput(overview=overview, last_updated=computed_at)


def run_trend(
    inp: QueryTrendInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
    cancellation: CancellationPort | None = None,
) -> TrendOutput:
    """
    Daily stats for the last N days, oldest first.

    Args:
        inp: Input containing the number of days.
        store: Visit store port.
        time_port: Optional time port.
        rules: Optional rules port for configuration.
        cancellation: Optional signal checked before each day.

    Returns:
        TrendOutput with one entry per day, or validation errors.

    Raises:
        QueryCancelledError: If the signal fires before the series completes.
        StoreUnavailableError: If the store cannot be read.
    """
    service = _query_service(store, time_port, rules)
    days, errors = service.trend(inp.days, cancellation=cancellation)
    return TrendOutput(days=tuple(days), errors=errors, success=len(errors) == 0)


def run_breakdown(
    inp: QueryBreakdownInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> BreakdownOutput:
    """Visit counts grouped by one dimension, largest group first."""
    service = _query_service(store, time_port, rules)
    window, items, errors = service.breakdown(inp.dimension, inp.start_time, inp.end_time)
    return BreakdownOutput(
        dimension=inp.dimension,
        items=tuple(items),
        window=window,
        errors=errors,
        success=len(errors) == 0,
    )


def _run_dimension(
    dimension: BreakdownDimension,
    inp: QueryWindowInput,
    store: VisitStorePort,
    time_port: TimePort | None,
    rules: RulesPort | None,
) -> BreakdownOutput:
    return run_breakdown(
        QueryBreakdownInput(dimension=dimension, start_time=inp.start_time, end_time=inp.end_time),
        store=store,
        time_port=time_port,
        rules=rules,
    )


def run_device_stats(
    inp: QueryWindowInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> BreakdownOutput:
    """Visits grouped by device type."""
    return _run_dimension("device_type", inp, store, time_port, rules)


def run_browser_stats(
    inp: QueryWindowInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> BreakdownOutput:
    """Visits grouped by browser."""
    return _run_dimension("browser", inp, store, time_port, rules)


def run_os_stats(
    inp: QueryWindowInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> BreakdownOutput:
    """Visits grouped by operating system."""
    return _run_dimension("operating_system", inp, store, time_port, rules)


def run_traffic_source_stats(
    inp: QueryWindowInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> BreakdownOutput:
    """Visits grouped by traffic source."""
    return _run_dimension("traffic_source", inp, store, time_port, rules)


def run_top_pages(
    inp: QueryTopPagesInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> TopPagesOutput:
    """
    Most visited URLs in the window.

    Args:
        inp: Input containing the window and result limit.
        store: Visit store port.
        time_port: Optional time port.
        rules: Optional rules port for configuration.

    Returns:
        TopPagesOutput with at most `limit` pages, or validation errors.
    """
    service = _query_service(store, time_port, rules)
    window, pages, errors = service.top_pages(inp.start_time, inp.end_time, inp.limit)
    return TopPagesOutput(
        pages=tuple(pages),
        window=window,
        errors=errors,
        success=len(errors) == 0,
    )


def run_performance(
    inp: QueryPerformanceInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> PerformanceOutput:
    """Average response time (ms) and error rate (%) in the window."""
    service = _query_service(store, time_port, rules)
    window, avg_ms, error_rate, errors = service.performance_stats(inp.start_time, inp.end_time)
    return PerformanceOutput(
        avg_response_time_ms=avg_ms,
        error_rate=error_rate,
        window=window,
        errors=errors,
        success=len(errors) == 0,
    )


def run_recent_visits(
    inp: QueryRecentVisitsInput,
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
) -> VisitListOutput:
    """Most recent visits, newest first."""
    service = _query_service(store, time_port, rules)
    visits, errors = service.recent_visits(inp.limit)
    return VisitListOutput(visits=tuple(visits), errors=errors, success=len(errors) == 0)


def run_session_visits(
    inp: QuerySessionVisitsInput,
    *,
    store: VisitStorePort,
) -> VisitListOutput:
    """All visits sharing a session id, newest first."""
    service = VisitQueryService(store=store)
    return VisitListOutput(visits=tuple(service.session_visits(inp.session_id)))


def run(
    inp: (
        RecordVisitInput
        | CompleteResponseInput
        | QueryOverviewInput
        | QueryRealtimeInput
        | QueryTrendInput
        | QueryBreakdownInput
        | QueryTopPagesInput
        | QueryPerformanceInput
        | QueryRecentVisitsInput
        | QuerySessionVisitsInput
    ),
    *,
    store: VisitStorePort,
    time_port: TimePort | None = None,
    rules: RulesPort | None = None,
    cancellation: CancellationPort | None = None,
) -> (
    RecordVisitOutput
    | CompleteResponseOutput
    | OverviewOutput
    | RealtimeOutput
    | TrendOutput
    | BreakdownOutput
    | TopPagesOutput
    | PerformanceOutput
    | VisitListOutput
):
    """
    Main entry point for the visits component.

    Dispatches to appropriate handler based on input type.
    """
    if isinstance(inp, RecordVisitInput):
        return run_record(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, CompleteResponseInput):
        return run_complete_response(inp, store=store)
    elif isinstance(inp, QueryOverviewInput):
        return run_overview(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, QueryRealtimeInput):
        return run_realtime(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, QueryTrendInput):
        return run_trend(
            inp,
            store=store,
            time_port=time_port,
            rules=rules,
            cancellation=cancellation,
        )
    elif isinstance(inp, QueryBreakdownInput):
        return run_breakdown(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, QueryTopPagesInput):
        return run_top_pages(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, QueryPerformanceInput):
        return run_performance(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, QueryRecentVisitsInput):
        return run_recent_visits(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, QuerySessionVisitsInput):
        return run_session_visits(inp, store=store)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
