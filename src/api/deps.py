import os
from functools import lru_cache
from pathlib import Path

from src.adapters.clock import SystemClock
from src.adapters.sqlite_db import SQLiteVisitStore
from src.rules.loader import load_rules
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("VISITS_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "visits.db")
        self.rules_path = Path(os.environ.get("VISITS_RULES_PATH", self.base_dir / "rules.yaml"))
        self.migrations_dir = str(self.base_dir / "migrations")


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


class VisitRulesAdapter:
    """Adapter to map generic Rules to the visits component RulesPort."""

    def __init__(self, rules: Rules):
        self._rules = rules.analytics

    def get_timezone(self) -> str:
        return self._rules.timezone

    def get_new_visitor_window_days(self) -> int:
        return self._rules.new_visitor_window_days

    def get_default_range_days(self) -> int:
        return self._rules.default_range_days

    def get_trend_limits(self) -> dict[str, int]:
        return self._rules.trend.model_dump()

    def get_top_pages_limits(self) -> dict[str, int]:
        return self._rules.top_pages.model_dump()

    def get_error_status_threshold(self) -> int:
        return self._rules.error_status_threshold

    def get_session_config(self) -> dict[str, str | int]:
        return self._rules.session.model_dump()

    def derive_traffic_source(self) -> bool:
        return self._rules.derive_traffic_source

    def get_query_timeout_seconds(self) -> float:
        return self._rules.query_timeout_seconds


def get_visit_rules() -> VisitRulesAdapter:
    return VisitRulesAdapter(get_rules())


# --- Store ---
def get_visit_store() -> SQLiteVisitStore:
    return SQLiteVisitStore(get_settings().db_path)


# Time adapter for deterministic time operations
_clock_instance: SystemClock | None = None


def get_clock() -> SystemClock:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance


def reset_dependencies() -> None:
    """Drop cached settings and rules (for testing)."""
    global _clock_instance
    get_settings.cache_clear()
    get_rules.cache_clear()
    _clock_instance = None
