"""
In-memory visit store for testing/dev.

Implements VisitStorePort over a list of records guarded by a lock.
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Iterator
from dataclasses import replace

from .models import TimeWindow, VisitEvent

# Fields that may be used in distinct counts and group-by queries.
GROUPABLE_FIELDS = frozenset(
    {
        "ip_address",
        "session_id",
        "url",
        "device_type",
        "browser",
        "operating_system",
        "traffic_source",
    }
)


def check_groupable(field_name: str) -> None:
    if field_name not in GROUPABLE_FIELDS:
        msg = f"Field '{field_name}' cannot be grouped or counted distinctly"
        raise ValueError(msg)


class InMemoryVisitStore:
    """In-memory visit store."""

    def __init__(self) -> None:
        self._events: dict[int, VisitEvent] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def _in_window(self, window: TimeWindow) -> Iterator[VisitEvent]:
        with self._lock:
            events = list(self._events.values())
        return (e for e in events if window.contains(e.visit_time))

    def insert(self, event: VisitEvent) -> int:
        """Store an event and assign its id."""
        with self._lock:
            event_id = self._next_id
            self._next_id += 1
            self._events[event_id] = replace(event, id=event_id)
        return event_id

    def patch(self, event_id: int, status_code: int, response_time_ms: int) -> bool:
        """Fill response metadata once."""
        with self._lock:
            current = self._events.get(event_id)
            if current is None:
                return False
            if current.status_code is not None or current.response_time_ms is not None:
                return False
            self._events[event_id] = replace(
                current,
                status_code=status_code,
                response_time_ms=response_time_ms,
            )
        return True

    def get_by_id(self, event_id: int) -> VisitEvent | None:
        with self._lock:
            return self._events.get(event_id)

    def find_latest_by_ip(self, ip_address: str) -> VisitEvent | None:
        with self._lock:
            matches = [e for e in self._events.values() if e.ip_address == ip_address]
        if not matches:
            return None
        return max(matches, key=lambda e: (e.visit_time, e.id or 0))

    def count_visits(self, window: TimeWindow) -> int:
        return sum(1 for _ in self._in_window(window))

    def count_distinct(self, field_name: str, window: TimeWindow) -> int:
        check_groupable(field_name)
        values = {getattr(e, field_name) for e in self._in_window(window)}
        values.discard(None)
        return len(values)

    def count_new_visitors(self, window: TimeWindow) -> int:
        return sum(1 for e in self._in_window(window) if e.is_new_visitor)

    def group_count(self, field_name: str, window: TimeWindow) -> list[tuple[str | None, int]]:
        check_groupable(field_name)
        counts = Counter(getattr(e, field_name) for e in self._in_window(window))
        return list(counts.items())

    def average_response_time(self, window: TimeWindow) -> float | None:
        times = [e.response_time_ms for e in self._in_window(window) if e.response_time_ms is not None]
        if not times:
            return None
        return sum(times) / len(times)

    def count_status_at_least(self, threshold: int, window: TimeWindow) -> int:
        return sum(
            1
            for e in self._in_window(window)
            if e.status_code is not None and e.status_code >= threshold
        )

    def list_recent(self, limit: int) -> list[VisitEvent]:
        with self._lock:
            events = list(self._events.values())
        events.sort(key=lambda e: (e.visit_time, e.id or 0), reverse=True)
        return events[:limit]

    def list_by_session(self, session_id: str) -> list[VisitEvent]:
        with self._lock:
            events = [e for e in self._events.values() if e.session_id == session_id]
        events.sort(key=lambda e: (e.visit_time, e.id or 0), reverse=True)
        return events

    def get_all(self) -> list[VisitEvent]:
        """Get all stored events (for testing)."""
        with self._lock:
            return list(self._events.values())
