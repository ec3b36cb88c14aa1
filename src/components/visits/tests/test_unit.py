"""
Visits component unit tests.

Tests for request recording, response completion and dashboard queries.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from src.components.visits import (
    CancelToken,
    CompleteResponseInput,
    Deadline,
    InMemoryVisitStore,
    QueryBreakdownInput,
    QueryCancelledError,
    QueryOverviewInput,
    QueryPerformanceInput,
    QueryRealtimeInput,
    QueryRecentVisitsInput,
    QuerySessionVisitsInput,
    QueryTopPagesInput,
    QueryTrendInput,
    QueryWindowInput,
    RecordVisitInput,
    RecordVisitOutput,
    StoreUnavailableError,
    VisitEvent,
    run,
    run_browser_stats,
    run_complete_response,
    run_device_stats,
    run_overview,
    run_performance,
    run_realtime,
    run_recent_visits,
    run_record,
    run_session_visits,
    run_top_pages,
    run_trend,
)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.0.0"
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
FIREFOX_ANDROID = "Mozilla/5.0 (Android 14; Mobile; rv:121.0) Gecko/121.0 Firefox/121.0"

# Saturday
NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)


# --- Mock Implementations ---


class MockTimePort:
    """Mock time port for deterministic testing."""

    def __init__(self, fixed_time: datetime | None = None) -> None:
        self._time = fixed_time or NOW

    def now_utc(self) -> datetime:
        return self._time

    def advance(self, delta: timedelta) -> None:
        self._time = self._time + delta


class MockRulesPort:
    """Rules port with overridable session settings."""

    def __init__(self, session: dict[str, str | int] | None = None) -> None:
        self._session = session or {"scheme": "literal", "bucket_minutes": 30}

    def get_timezone(self) -> str:
        return "UTC"

    def get_new_visitor_window_days(self) -> int:
        return 30

    def get_default_range_days(self) -> int:
        return 30

    def get_trend_limits(self) -> dict[str, int]:
        return {"min_days": 1, "max_days": 90, "default_days": 30}

    def get_top_pages_limits(self) -> dict[str, int]:
        return {"min_limit": 1, "max_limit": 50, "default_limit": 10}

    def get_error_status_threshold(self) -> int:
        return 400

    def get_session_config(self) -> dict[str, str | int]:
        return self._session

    def derive_traffic_source(self) -> bool:
        return False


class BrokenRulesPort(MockRulesPort):
    """Rules port whose backend is down."""

    def get_session_config(self) -> dict[str, str | int]:
        raise RuntimeError("rules backend down")


class DerivingRulesPort(MockRulesPort):
    """Rules port with traffic source derivation on."""

    def derive_traffic_source(self) -> bool:
        return True


class ShortTrendRulesPort(MockRulesPort):
    """Rules port with a one-week default trend."""

    def get_trend_limits(self) -> dict[str, int]:
        return {"min_days": 1, "max_days": 90, "default_days": 7}


class FailingStore(InMemoryVisitStore):
    """Store whose every operation fails."""

    def insert(self, event: VisitEvent) -> int:
        raise StoreUnavailableError("disk full")

    def patch(self, event_id: int, status_code: int, response_time_ms: int) -> bool:
        raise StoreUnavailableError("disk full")

    def count_visits(self, window) -> int:  # type: ignore[no-untyped-def]
        raise StoreUnavailableError("connection lost")

    def find_latest_by_ip(self, ip_address: str) -> VisitEvent | None:
        return None


# --- Fixtures ---


@pytest.fixture
def store() -> InMemoryVisitStore:
    return InMemoryVisitStore()


@pytest.fixture
def time_port() -> MockTimePort:
    return MockTimePort()


def add_visit(
    store: InMemoryVisitStore,
    ip: str,
    when: datetime,
    url: str = "/",
    device_type: str = "desktop",
    browser: str | None = "Chrome",
    is_new: bool = False,
    session_id: str | None = None,
) -> int:
    """Insert a pre-classified visit directly."""
    return store.insert(
        VisitEvent(
            ip_address=ip,
            url=url,
            visit_time=when,
            session_id=session_id or f"{ip}_{int(when.timestamp() * 1000)}",
            is_new_visitor=is_new,
            device_type=device_type,  # type: ignore[arg-type]
            browser=browser,
        )
    )


def record(
    store: InMemoryVisitStore,
    time_port: MockTimePort,
    ua: str = CHROME_WINDOWS,
    ip: str = "203.0.113.5",
    url: str = "/",
) -> RecordVisitOutput:
    return run_record(
        RecordVisitInput(url=url, headers={"User-Agent": ua}, peer_address=ip),
        store=store,
        time_port=time_port,
    )


# --- Record Tests ---


class TestRecord:
    """Test run_record functionality."""

    def test_record_classifies_desktop_chrome(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = record(store, time_port)

        assert result.recorded is True
        assert result.handle == 1
        assert result.event is not None
        assert result.event.id == 1
        assert result.event.device_type == "desktop"
        assert result.event.operating_system == "Windows 10"
        assert result.event.browser == "Chrome"

    def test_record_tablet_before_mobile(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        """An iPad UA carries the Mobile token but is a tablet."""
        result = record(store, time_port, ua=SAFARI_IPAD)

        assert result.event is not None
        assert result.event.device_type == "tablet"
        assert result.event.browser == "Safari"

    def test_record_edge_before_chrome(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = record(store, time_port, ua=EDGE_WINDOWS)

        assert result.event is not None
        assert result.event.browser == "Edge"

    def test_record_mobile(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        result = record(store, time_port, ua=FIREFOX_ANDROID)

        assert result.event is not None
        assert result.event.device_type == "mobile"
        assert result.event.browser == "Firefox"

    def test_record_empty_user_agent(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        result = run_record(RecordVisitInput(url="/"), store=store, time_port=time_port)

        assert result.event is not None
        assert result.event.device_type == "unknown"
        assert result.event.browser is None
        assert result.event.operating_system is None
        assert result.event.ip_address == "unknown"

    def test_record_prefers_forwarded_for(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        inp = RecordVisitInput(
            url="/",
            headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1", "X-Real-IP": "10.0.0.2"},
            peer_address="127.0.0.1",
        )
        result = run_record(inp, store=store, time_port=time_port)

        assert result.event is not None
        assert result.event.ip_address == "198.51.100.7"

    def test_session_id_is_ip_and_millis(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = record(store, time_port)

        assert result.event is not None
        assert result.event.session_id == f"203.0.113.5_{int(NOW.timestamp() * 1000)}"

    def test_bucketed_sessions_share_id(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        rules = MockRulesPort({"scheme": "bucketed", "bucket_minutes": 30})
        first = run_record(
            RecordVisitInput(url="/", peer_address="203.0.113.5"),
            store=store,
            time_port=time_port,
            rules=rules,
        )
        time_port.advance(timedelta(minutes=5))
        second = run_record(
            RecordVisitInput(url="/about", peer_address="203.0.113.5"),
            store=store,
            time_port=time_port,
            rules=rules,
        )

        assert first.event is not None and second.event is not None
        assert first.event.session_id == second.event.session_id

    def test_first_visit_is_new(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        result = record(store, time_port)

        assert result.event is not None
        assert result.event.is_new_visitor is True

    def test_return_within_window_is_not_new(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        record(store, time_port)
        time_port.advance(timedelta(days=10))
        result = record(store, time_port)

        assert result.event is not None
        assert result.event.is_new_visitor is False

    def test_return_after_window_is_new(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        record(store, time_port)
        time_port.advance(timedelta(days=40))
        result = record(store, time_port)

        assert result.event is not None
        assert result.event.is_new_visitor is True

    def test_record_failure_is_swallowed(self, time_port: MockTimePort) -> None:
        result = record(FailingStore(), time_port)

        assert result.recorded is False
        assert result.handle is None
        assert result.event is None

    def test_record_rules_failure_is_swallowed(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = run_record(
            RecordVisitInput(url="/", peer_address="1.1.1.1"),
            store=store,
            time_port=time_port,
            rules=BrokenRulesPort(),
        )

        assert result.recorded is False
        assert result.handle is None
        assert store.get_all() == []

    def test_record_bad_session_scheme_is_swallowed(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = run_record(
            RecordVisitInput(url="/", peer_address="1.1.1.1"),
            store=store,
            time_port=time_port,
            rules=MockRulesPort(session={"scheme": "cookie"}),
        )

        assert result.recorded is False

    def test_record_derives_source_from_query_string(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = run_record(
            RecordVisitInput(
                url="/pricing", query_string="utm_medium=cpc", peer_address="1.1.1.1"
            ),
            store=store,
            time_port=time_port,
            rules=DerivingRulesPort(),
        )

        assert result.event is not None
        assert result.event.url == "/pricing"
        assert result.event.traffic_source == "paid_search"


# --- Complete Response Tests ---


class TestCompleteResponse:
    """Test run_complete_response functionality."""

    def test_complete_patches_once(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        handle = record(store, time_port).handle

        first = run_complete_response(
            CompleteResponseInput(handle=handle, status_code=200, elapsed_ms=42), store=store
        )
        second = run_complete_response(
            CompleteResponseInput(handle=handle, status_code=500, elapsed_ms=99), store=store
        )

        assert first.patched is True
        assert second.patched is False
        stored = store.get_by_id(handle)  # type: ignore[arg-type]
        assert stored is not None
        assert stored.status_code == 200
        assert stored.response_time_ms == 42

    def test_complete_missing_handle_is_noop(self, store: InMemoryVisitStore) -> None:
        result = run_complete_response(
            CompleteResponseInput(handle=None, status_code=200, elapsed_ms=1), store=store
        )
        assert result.patched is False

    def test_complete_unknown_handle_is_noop(self, store: InMemoryVisitStore) -> None:
        result = run_complete_response(
            CompleteResponseInput(handle=999, status_code=200, elapsed_ms=1), store=store
        )
        assert result.patched is False

    def test_complete_failure_is_swallowed(self) -> None:
        result = run_complete_response(
            CompleteResponseInput(handle=1, status_code=200, elapsed_ms=1), store=FailingStore()
        )
        assert result.patched is False


# --- Overview Tests ---


class TestOverview:
    """Test run_overview and run_realtime."""

    def test_overview_counts_and_growth(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        today = NOW - timedelta(hours=2)
        yesterday = NOW - timedelta(days=1)
        add_visit(store, "1.1.1.1", today, is_new=True)
        add_visit(store, "1.1.1.1", today + timedelta(minutes=1))
        add_visit(store, "2.2.2.2", today)
        add_visit(store, "1.1.1.1", yesterday)
        add_visit(store, "3.3.3.3", yesterday)

        result = run_overview(QueryOverviewInput(), store=store, time_port=time_port)
        stats = result.overview

        assert result.success is True
        assert stats.today_visits == 3
        assert stats.today_unique_visitors == 2
        assert stats.today_sessions == 3
        assert stats.today_new_visitors == 1
        assert stats.yesterday_visits == 2
        assert stats.yesterday_unique_visitors == 2
        assert stats.week_visits == 5
        assert stats.month_visits == 5
        assert stats.visit_growth_rate == pytest.approx(50.0)
        assert stats.visitor_growth_rate == pytest.approx(0.0)

    def test_growth_rate_zero_when_no_yesterday(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        add_visit(store, "1.1.1.1", NOW - timedelta(hours=1))

        stats = run_overview(QueryOverviewInput(), store=store, time_port=time_port).overview

        assert stats.today_visits == 1
        assert stats.visit_growth_rate == 0.0

    def test_week_starts_monday(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        add_visit(store, "1.1.1.1", datetime(2024, 6, 10, 0, 30, tzinfo=UTC))
        add_visit(store, "1.1.1.1", datetime(2024, 6, 9, 23, 30, tzinfo=UTC))

        stats = run_overview(QueryOverviewInput(), store=store, time_port=time_port).overview

        assert stats.week_visits == 1
        assert stats.month_visits == 2

    def test_realtime_stamps_computation_time(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = run_realtime(QueryRealtimeInput(), store=store, time_port=time_port)

        assert result.last_updated == NOW
        assert result.overview.today_visits == 0

    def test_overview_store_failure_propagates(self, time_port: MockTimePort) -> None:
        with pytest.raises(StoreUnavailableError):
            run_overview(QueryOverviewInput(), store=FailingStore(), time_port=time_port)


# --- Trend Tests ---


class TestTrend:
    """Test run_trend functionality."""

    def test_trend_is_contiguous_oldest_first(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        add_visit(store, "1.1.1.1", NOW - timedelta(days=2))
        add_visit(store, "2.2.2.2", NOW - timedelta(days=2), is_new=True)

        result = run_trend(QueryTrendInput(days=7), store=store, time_port=time_port)

        assert result.success is True
        assert [d.date for d in result.days] == [
            "2024-06-09",
            "2024-06-10",
            "2024-06-11",
            "2024-06-12",
            "2024-06-13",
            "2024-06-14",
            "2024-06-15",
        ]
        day = result.days[4]
        assert day.visits == 2
        assert day.unique_visitors == 2
        assert day.new_visitors == 1
        assert sum(d.visits for d in result.days) == 2

    @pytest.mark.parametrize("days", [0, -1, 366])
    def test_trend_rejects_out_of_range(
        self, store: InMemoryVisitStore, time_port: MockTimePort, days: int
    ) -> None:
        result = run_trend(QueryTrendInput(days=days), store=store, time_port=time_port)

        assert result.success is False
        assert result.days == ()
        assert result.errors[0].code == "days_out_of_range"

    def test_trend_default_days(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        assert len(run_trend(QueryTrendInput(), store=store, time_port=time_port).days) == 30

        result = run_trend(
            QueryTrendInput(), store=store, time_port=time_port, rules=ShortTrendRulesPort()
        )

        assert len(result.days) == 7
        assert result.days[-1].date == "2024-06-15"

    def test_trend_limits_come_from_rules(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = run_trend(
            QueryTrendInput(days=91), store=store, time_port=time_port, rules=MockRulesPort()
        )
        assert result.success is False

    def test_trend_cancelled(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        token = CancelToken()
        token.cancel()

        with pytest.raises(QueryCancelledError):
            run_trend(
                QueryTrendInput(days=30), store=store, time_port=time_port, cancellation=token
            )

    def test_trend_deadline_passed(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        deadline = Deadline(NOW - timedelta(seconds=1), time_port)

        with pytest.raises(QueryCancelledError):
            run_trend(
                QueryTrendInput(days=3), store=store, time_port=time_port, cancellation=deadline
            )


# --- Breakdown Tests ---


class TestBreakdowns:
    """Test device/browser breakdowns and top pages."""

    def test_device_stats_sorted_by_count(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        when = NOW - timedelta(days=1)
        add_visit(store, "1.1.1.1", when, device_type="mobile")
        add_visit(store, "2.2.2.2", when, device_type="mobile")
        add_visit(store, "3.3.3.3", when, device_type="desktop")

        result = run_device_stats(QueryWindowInput(), store=store, time_port=time_port)

        assert result.dimension == "device_type"
        assert [(i.key, i.count) for i in result.items] == [("mobile", 2), ("desktop", 1)]

    def test_browser_stats_respects_window(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        add_visit(store, "1.1.1.1", NOW - timedelta(days=1), browser="Firefox")
        add_visit(store, "2.2.2.2", NOW - timedelta(days=60), browser="Chrome")

        result = run_browser_stats(QueryWindowInput(), store=store, time_port=time_port)

        assert [(i.key, i.count) for i in result.items] == [("Firefox", 1)]

    def test_breakdown_invalid_window(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        inp = QueryBreakdownInput(
            dimension="browser",
            start_time=NOW,
            end_time=NOW - timedelta(days=1),
        )
        result = run(inp, store=store, time_port=time_port)

        assert result.success is False
        assert result.errors[0].code == "invalid_window"

    def test_top_pages_limit_and_order(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        when = NOW - timedelta(hours=1)
        for _ in range(3):
            add_visit(store, "1.1.1.1", when, url="/a")
        for _ in range(2):
            add_visit(store, "1.1.1.1", when, url="/b")
        add_visit(store, "1.1.1.1", when, url="/c")

        result = run_top_pages(QueryTopPagesInput(limit=2), store=store, time_port=time_port)

        assert result.success is True
        assert [(p.key, p.count) for p in result.pages] == [("/a", 3), ("/b", 2)]

    def test_top_pages_default_limit(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        for i in range(12):
            add_visit(store, "1.1.1.1", NOW - timedelta(hours=1), url=f"/page-{i}")

        result = run_top_pages(QueryTopPagesInput(), store=store, time_port=time_port)

        assert len(result.pages) == 10

    @pytest.mark.parametrize("limit", [0, 101])
    def test_top_pages_rejects_bad_limit(
        self, store: InMemoryVisitStore, time_port: MockTimePort, limit: int
    ) -> None:
        result = run_top_pages(QueryTopPagesInput(limit=limit), store=store, time_port=time_port)

        assert result.success is False
        assert result.errors[0].code == "limit_out_of_range"


# --- Performance Tests ---


class TestPerformance:
    """Test run_performance functionality."""

    def test_average_and_error_rate(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        when = NOW - timedelta(hours=1)
        ok = add_visit(store, "1.1.1.1", when)
        failed = add_visit(store, "2.2.2.2", when)
        add_visit(store, "3.3.3.3", when)
        add_visit(store, "4.4.4.4", when)
        store.patch(ok, 200, 100)
        store.patch(failed, 500, 200)

        result = run_performance(QueryPerformanceInput(), store=store, time_port=time_port)

        assert result.avg_response_time_ms == pytest.approx(150.0)
        assert result.error_rate == pytest.approx(25.0)

    def test_empty_window_is_zero(self, store: InMemoryVisitStore, time_port: MockTimePort) -> None:
        result = run_performance(QueryPerformanceInput(), store=store, time_port=time_port)

        assert result.avg_response_time_ms == 0.0
        assert result.error_rate == 0.0


# --- Listing Tests ---


class TestListings:
    """Test recent and per-session visit listings."""

    def test_recent_visits_newest_first(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        add_visit(store, "1.1.1.1", NOW - timedelta(hours=2), url="/old")
        add_visit(store, "1.1.1.1", NOW - timedelta(hours=1), url="/new")

        result = run_recent_visits(QueryRecentVisitsInput(limit=1), store=store, time_port=time_port)

        assert [v.url for v in result.visits] == ["/new"]

    def test_recent_visits_rejects_bad_limit(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        result = run_recent_visits(QueryRecentVisitsInput(limit=0), store=store, time_port=time_port)
        assert result.success is False

    def test_session_visits(self, store: InMemoryVisitStore) -> None:
        add_visit(store, "1.1.1.1", NOW, session_id="s-1")
        add_visit(store, "1.1.1.1", NOW + timedelta(minutes=1), session_id="s-1")
        add_visit(store, "2.2.2.2", NOW, session_id="s-2")

        result = run_session_visits(QuerySessionVisitsInput(session_id="s-1"), store=store)

        assert len(result.visits) == 2


# --- End-to-end ---


class TestScenario:
    """Record, complete and query through the public entry points."""

    def test_two_visits_one_visitor(
        self, store: InMemoryVisitStore, time_port: MockTimePort
    ) -> None:
        first = record(store, time_port, url="/")
        run(CompleteResponseInput(handle=first.handle, status_code=200, elapsed_ms=30), store=store)
        time_port.advance(timedelta(minutes=3))
        second = record(store, time_port, url="/pricing")
        run(CompleteResponseInput(handle=second.handle, status_code=404, elapsed_ms=10), store=store)
        time_port.advance(timedelta(minutes=1))

        overview = run(QueryOverviewInput(), store=store, time_port=time_port)
        performance = run(QueryPerformanceInput(), store=store, time_port=time_port)

        assert overview.overview.today_visits == 2  # type: ignore[union-attr]
        assert overview.overview.today_unique_visitors == 1  # type: ignore[union-attr]
        assert overview.overview.today_sessions == 2  # type: ignore[union-attr]
        assert overview.overview.today_new_visitors == 1  # type: ignore[union-attr]
        assert performance.avg_response_time_ms == pytest.approx(20.0)  # type: ignore[union-attr]
        assert performance.error_rate == pytest.approx(50.0)  # type: ignore[union-attr]

    def test_unknown_input_type(self, store: InMemoryVisitStore) -> None:
        with pytest.raises(ValueError, match="Unknown input type"):
            run(object(), store=store)  # type: ignore[arg-type]
