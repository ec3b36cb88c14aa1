from datetime import UTC, datetime


class SystemClock:
    """Wall-clock TimePort."""

    def now_utc(self) -> datetime:
        return datetime.now(UTC)
