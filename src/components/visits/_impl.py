"""
VisitRecorder and VisitQueryService - the write and read paths.

Write path: client IP -> classifier -> identity resolver -> store.insert,
then store.patch once the response completes. Recording is fail-open: any
failure is logged and reported as "not recorded", never raised.

Read path: validate input, then compose AggregationEngine calls. Validation
failures are returned before any store query runs; store failures propagate
as StoreUnavailableError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from ._aggregate import AggregationEngine, Calendar, growth_rate
from ._attrib import classify_traffic_source
from ._classify import classify_user_agent
from ._identity import IdentityConfig, IdentityResolver, extract_client_ip, get_header
from .models import (
    BreakdownDimension,
    CountItem,
    DailyStats,
    OverviewStats,
    TimeWindow,
    VisitEvent,
    VisitsValidationError,
)
from .ports import CancellationPort, TimePort, VisitStorePort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class VisitsConfig:
    """Visit analytics configuration."""

    timezone: str = "UTC"
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    default_range_days: int = 30

    trend_min_days: int = 1
    trend_max_days: int = 365
    trend_default_days: int = 30

    top_pages_min_limit: int = 1
    top_pages_max_limit: int = 100
    top_pages_default_limit: int = 10

    recent_max_limit: int = 100

    error_status_threshold: int = 400
    derive_traffic_source: bool = False


DEFAULT_CONFIG = VisitsConfig()


class DefaultTimePort:
    """Default time provider."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        return datetime.now(UTC)


# --- Validation Functions ---


def validate_days(days: int, config: VisitsConfig = DEFAULT_CONFIG) -> list[VisitsValidationError]:
    """Validate trend length."""
    if config.trend_min_days <= days <= config.trend_max_days:
        return []
    return [
        VisitsValidationError(
            code="days_out_of_range",
            message=f"Days must be between {config.trend_min_days} and {config.trend_max_days}",
            field_name="days",
        )
    ]


def validate_limit(
    limit: int,
    min_limit: int,
    max_limit: int,
) -> list[VisitsValidationError]:
    """Validate a result limit."""
    if min_limit <= limit <= max_limit:
        return []
    return [
        VisitsValidationError(
            code="limit_out_of_range",
            message=f"Limit must be between {min_limit} and {max_limit}",
            field_name="limit",
        )
    ]


def resolve_window(
    start: datetime | None,
    end: datetime | None,
    now: datetime,
    default_days: int,
) -> tuple[TimeWindow | None, list[VisitsValidationError]]:
    """Fill in the default lookback and validate ordering."""
    start = start if start is not None else now - timedelta(days=default_days)
    end = end if end is not None else now

    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)

    if start > end:
        return None, [
            VisitsValidationError(
                code="invalid_window",
                message="Start time must not be after end time",
                field_name="start_time",
            )
        ]

    return TimeWindow(start=start, end=end), []


# --- Visit Recorder ---


class VisitRecorder:
    """
    Records inbound requests as classified visit events.

    Holds no per-request state; the returned handle is the only link between
    record() and complete_response().
    """

    def __init__(
        self,
        store: VisitStorePort,
        time_port: TimePort | None = None,
        config: VisitsConfig | None = None,
    ) -> None:
        """Initialize recorder."""
        self._store = store
        self._time = time_port or DefaultTimePort()
        self._config = config or DEFAULT_CONFIG
        self._identity = IdentityResolver(store, self._config.identity)

    def build_event(
        self,
        url: str,
        headers: Mapping[str, str],
        query_string: str | None = None,
        peer_address: str | None = None,
        http_method: str | None = None,
        user_id: int | None = None,
        traffic_source: str | None = None,
        page_stay_time_sec: int | None = None,
        now: datetime | None = None,
    ) -> VisitEvent:
        """Classify a request and resolve its identity (one store read)."""
        now = now or self._time.now_utc()
        ip_address = extract_client_ip(headers, peer_address)
        user_agent = get_header(headers, "User-Agent")
        referer = get_header(headers, "Referer")

        ua = classify_user_agent(user_agent)
        identity = self._identity.resolve(ip_address, now)

        if traffic_source is None and self._config.derive_traffic_source:
            traffic_source = classify_traffic_source(
                referer,
                url=f"{url}?{query_string}" if query_string else url,
                site_host=get_header(headers, "Host"),
            ).value

        return VisitEvent(
            ip_address=ip_address,
            url=url,
            visit_time=now,
            session_id=identity.session_id,
            is_new_visitor=identity.is_new_visitor,
            device_type=ua.device_type,
            operating_system=ua.operating_system,
            browser=ua.browser,
            http_method=http_method,
            user_agent=user_agent,
            referer=referer,
            user_id=user_id,
            traffic_source=traffic_source,
            page_stay_time_sec=page_stay_time_sec,
        )

    def record(
        self,
        url: str,
        headers: Mapping[str, str],
        query_string: str | None = None,
        peer_address: str | None = None,
        http_method: str | None = None,
        user_id: int | None = None,
        traffic_source: str | None = None,
        page_stay_time_sec: int | None = None,
    ) -> tuple[int | None, VisitEvent | None]:
        """
        Record a visit.

        Returns:
            Tuple of (handle, event). Both are None if nothing was stored.
        """
        try:
            event = self.build_event(
                url=url,
                query_string=query_string,
                headers=headers,
                peer_address=peer_address,
                http_method=http_method,
                user_id=user_id,
                traffic_source=traffic_source,
                page_stay_time_sec=page_stay_time_sec,
            )
            handle = self._store.insert(event)
        except Exception:
            logger.exception("Failed to record visit: url=%s", url)
            return None, None

        logger.info("Visit recorded: ip=%s url=%s", event.ip_address, url)
        return handle, replace(event, id=handle)

    def complete_response(
        self,
        handle: int | None,
        status_code: int,
        elapsed_ms: int,
    ) -> bool:
        """Attach response status and timing. Missing handles are a no-op."""
        if handle is None:
            return False

        try:
            patched = self._store.patch(handle, status_code, elapsed_ms)
        except Exception:
            logger.exception("Failed to complete visit %s", handle)
            return False

        if not patched:
            logger.debug("Visit %s not patched (missing or already completed)", handle)
        return patched


# --- Visit Query Service ---


class VisitQueryService:
    """
    Composes aggregation calls into dashboard responses.

    Every call reads the store afresh.
    """

    def __init__(
        self,
        store: VisitStorePort,
        time_port: TimePort | None = None,
        config: VisitsConfig | None = None,
    ) -> None:
        """Initialize service."""
        self._store = store
        self._time = time_port or DefaultTimePort()
        self._config = config or DEFAULT_CONFIG
        self._engine = AggregationEngine(store, self._config.error_status_threshold)
        self._calendar = Calendar(self._config.timezone)

    def now(self) -> datetime:
        return self._time.now_utc()

    def overview(self) -> OverviewStats:
        """Today, yesterday, this week and this month at a glance."""
        today = self._calendar.local_date(self.now())
        yesterday = today - timedelta(days=1)

        today_window = self._calendar.day_window(today)
        yesterday_window = self._calendar.day_window(yesterday)
        week_window = self._calendar.span_window(self._calendar.week_start(today), today)
        month_window = self._calendar.span_window(self._calendar.month_start(today), today)

        engine = self._engine
        today_visits = engine.count_visits(today_window)
        today_unique = engine.count_unique_visitors(today_window)
        yesterday_visits = engine.count_visits(yesterday_window)
        yesterday_unique = engine.count_unique_visitors(yesterday_window)

        return OverviewStats(
            today_visits=today_visits,
            today_unique_visitors=today_unique,
            today_sessions=engine.count_sessions(today_window),
            today_new_visitors=engine.count_new_visitors(today_window),
            yesterday_visits=yesterday_visits,
            yesterday_unique_visitors=yesterday_unique,
            week_visits=engine.count_visits(week_window),
            week_unique_visitors=engine.count_unique_visitors(week_window),
            month_visits=engine.count_visits(month_window),
            month_unique_visitors=engine.count_unique_visitors(month_window),
            visit_growth_rate=growth_rate(today_visits, yesterday_visits),
            visitor_growth_rate=growth_rate(today_unique, yesterday_unique),
        )

    def trend(
        self,
        days: int | None = None,
        cancellation: CancellationPort | None = None,
    ) -> tuple[list[DailyStats], list[VisitsValidationError]]:
        """Daily series, oldest first. days defaults to the configured trend length."""
        days = self._config.trend_default_days if days is None else days
        errors = validate_days(days, self._config)
        if errors:
            return [], errors

        today = self._calendar.local_date(self.now())
        return self._engine.trend(days, today, self._calendar, cancellation), []

    def breakdown(
        self,
        dimension: BreakdownDimension,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[TimeWindow | None, list[CountItem], list[VisitsValidationError]]:
        """Grouped counts for one dimension over a window."""
        window, errors = resolve_window(start, end, self.now(), self._config.default_range_days)
        if window is None:
            return None, [], errors
        return window, self._engine.group_by(dimension, window), []

    def top_pages(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> tuple[TimeWindow | None, list[CountItem], list[VisitsValidationError]]:
        """Most visited URLs."""
        limit = self._config.top_pages_default_limit if limit is None else limit
        errors = validate_limit(
            limit,
            self._config.top_pages_min_limit,
            self._config.top_pages_max_limit,
        )
        if errors:
            return None, [], errors

        window, errors = resolve_window(start, end, self.now(), self._config.default_range_days)
        if window is None:
            return None, [], errors

        return window, self._engine.top_pages(window, limit), []

    def performance_stats(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[TimeWindow | None, float, float, list[VisitsValidationError]]:
        """Average response time (ms) and error rate (%)."""
        window, errors = resolve_window(start, end, self.now(), self._config.default_range_days)
        if window is None:
            return None, 0.0, 0.0, errors
        return (
            window,
            self._engine.avg_response_time(window),
            self._engine.error_rate(window),
            [],
        )

    def realtime(self) -> tuple[OverviewStats, datetime]:
        """Overview plus the instant it was computed."""
        return self.overview(), self.now()

    def recent_visits(self, limit: int = 100) -> tuple[list[VisitEvent], list[VisitsValidationError]]:
        errors = validate_limit(limit, 1, self._config.recent_max_limit)
        if errors:
            return [], errors
        return self._store.list_recent(limit), []

    def session_visits(self, session_id: str) -> list[VisitEvent]:
        return self._store.list_by_session(session_id)
