"""
Visit aggregation engine - windowed counts, breakdowns and trend series.

All operations take a half-open TimeWindow [start, end) and read the store
directly; nothing is materialized, so results always reflect current data.

Key behaviors:
- Group-by results are sorted by count descending (ties: key ascending,
  unclassified last)
- Averages and rates are 0 when there is nothing to divide by
- Trend series issue 4 store queries per calendar day, oldest day first,
  checking the cancellation signal before each day
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from .models import CountItem, DailyStats, QueryCancelledError, TimeWindow
from .ports import CancellationPort, TimePort, VisitStorePort

BREAKDOWN_FIELDS = frozenset({"device_type", "browser", "operating_system", "traffic_source"})


# --- Math ---


def growth_rate(current: int, previous: int) -> float:
    """Percentage change from previous to current, 0 when previous is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def percentage(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return part / whole * 100


def sort_counts(counts: list[tuple[str | None, int]]) -> list[CountItem]:
    """Order groups by count descending, then key ascending with None last."""
    ordered = sorted(counts, key=lambda kv: (-kv[1], kv[0] is None, kv[0] or ""))
    return [CountItem(key=key, count=count) for key, count in ordered]


# --- Calendar ---


@dataclass(frozen=True)
class Calendar:
    """Calendar-day boundaries in a given timezone, expressed as UTC windows."""

    tz_name: str = "UTC"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.tz_name)

    def local_date(self, now_utc: datetime) -> date:
        if now_utc.tzinfo is None:
            now_utc = now_utc.replace(tzinfo=UTC)
        return now_utc.astimezone(self.tz).date()

    def start_of(self, day: date) -> datetime:
        """UTC instant of local midnight at the start of day."""
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(UTC)

    def day_window(self, day: date) -> TimeWindow:
        return TimeWindow(start=self.start_of(day), end=self.start_of(day + timedelta(days=1)))

    def span_window(self, first_day: date, last_day: date) -> TimeWindow:
        """Window from the start of first_day through the end of last_day."""
        return TimeWindow(
            start=self.start_of(first_day),
            end=self.start_of(last_day + timedelta(days=1)),
        )

    def week_start(self, day: date) -> date:
        """Monday of the week containing day."""
        return day - timedelta(days=day.weekday())

    def month_start(self, day: date) -> date:
        return day.replace(day=1)


# --- Cancellation ---


class NeverCancelled:
    """Cancellation signal that never fires."""

    def is_cancelled(self) -> bool:
        return False


class CancelToken:
    """Cancellation signal set explicitly by the caller, safe across threads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


class Deadline:
    """Cancellation signal that fires once the time port passes a deadline."""

    def __init__(self, expires_at: datetime, time_port: TimePort) -> None:
        self._expires_at = expires_at
        self._time = time_port

    @classmethod
    def after(cls, seconds: float, time_port: TimePort) -> Deadline:
        return cls(time_port.now_utc() + timedelta(seconds=seconds), time_port)

    def is_cancelled(self) -> bool:
        return self._time.now_utc() >= self._expires_at


# --- Aggregation Engine ---


class AggregationEngine:
    """
    Range and group-by queries over a visit store.

    Stateless apart from the injected store; safe to share between requests.
    """

    def __init__(self, store: VisitStorePort, error_status_threshold: int = 400) -> None:
        self._store = store
        self._error_status_threshold = error_status_threshold

    def count_visits(self, window: TimeWindow) -> int:
        return self._store.count_visits(window)

    def count_unique_visitors(self, window: TimeWindow) -> int:
        return self._store.count_distinct("ip_address", window)

    def count_sessions(self, window: TimeWindow) -> int:
        return self._store.count_distinct("session_id", window)

    def count_new_visitors(self, window: TimeWindow) -> int:
        return self._store.count_new_visitors(window)

    def group_by(self, field_name: str, window: TimeWindow) -> list[CountItem]:
        if field_name not in BREAKDOWN_FIELDS:
            msg = f"Unsupported breakdown field: {field_name}"
            raise ValueError(msg)
        return sort_counts(self._store.group_count(field_name, window))

    def top_pages(self, window: TimeWindow, limit: int) -> list[CountItem]:
        return sort_counts(self._store.group_count("url", window))[:limit]

    def avg_response_time(self, window: TimeWindow) -> float:
        avg = self._store.average_response_time(window)
        return float(avg) if avg is not None else 0.0

    def error_rate(self, window: TimeWindow) -> float:
        total = self._store.count_visits(window)
        if total == 0:
            return 0.0
        errors = self._store.count_status_at_least(self._error_status_threshold, window)
        return percentage(errors, total)

    def daily_stats(self, day: date, calendar: Calendar) -> DailyStats:
        window = calendar.day_window(day)
        return DailyStats(
            date=day.isoformat(),
            visits=self.count_visits(window),
            unique_visitors=self.count_unique_visitors(window),
            sessions=self.count_sessions(window),
            new_visitors=self.count_new_visitors(window),
        )

    def trend(
        self,
        days: int,
        today: date,
        calendar: Calendar,
        cancellation: CancellationPort | None = None,
    ) -> list[DailyStats]:
        """
        Daily series for the last `days` days ending today, oldest first.

        Raises QueryCancelledError if the signal fires between days.
        """
        signal = cancellation or NeverCancelled()
        series: list[DailyStats] = []

        for offset in range(days - 1, -1, -1):
            if signal.is_cancelled():
                msg = f"Trend query cancelled after {len(series)} of {days} days"
                raise QueryCancelledError(msg)
            series.append(self.daily_stats(today - timedelta(days=offset), calendar))

        return series
