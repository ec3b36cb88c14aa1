import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteVisitStore
from src.rules.loader import load_rules
from src.rules.models import Rules


class FixedClock:
    """TimePort pinned to a settable instant."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta


@pytest.fixture
def test_data_dir(tmp_path):
    return str(tmp_path)


@pytest.fixture
def db_path(test_data_dir):
    """Temporary SQLite DB with all migrations applied."""
    path = os.path.join(test_data_dir, "visits.db")
    SQLiteMigrator(path, "migrations").run_migrations()
    return path


@pytest.fixture
def sqlite_store(db_path) -> SQLiteVisitStore:
    return SQLiteVisitStore(db_path)


@pytest.fixture
def rules() -> Rules:
    """REAL rules from the project root (tests run from the project root)."""
    rules_path = Path("rules.yaml").resolve()
    if not rules_path.exists():
        raise FileNotFoundError(f"Rules not found at {rules_path}")
    return load_rules(rules_path)


@pytest.fixture
def clock() -> FixedClock:
    # Saturday, mid-month
    return FixedClock(datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC))
