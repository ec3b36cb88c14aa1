"""
Visitor identity - client IP extraction, session ids and new-visitor flag.

Key behaviors:
- Client IP: first X-Forwarded-For entry, then X-Real-IP, then peer address;
  header values equal to "unknown" are skipped
- Session id (literal scheme): "<ip>_<epoch millis of ingestion>", which is
  effectively unique per request
- Session id (bucketed scheme): "<ip>_<epoch millis of bucket start>"
- New visitor: no prior record for the IP, or the latest prior record is
  more than new_visitor_window_days old
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from .models import VisitEvent
from .ports import VisitStorePort

UNKNOWN_IP = "unknown"


class SessionScheme(str, Enum):
    """How session ids are derived."""

    LITERAL = "literal"
    BUCKETED = "bucketed"


@dataclass(frozen=True)
class IdentityConfig:
    """Identity resolution configuration."""

    new_visitor_window_days: int = 30
    session_scheme: SessionScheme = SessionScheme.LITERAL
    session_bucket_minutes: int = 30


DEFAULT_CONFIG = IdentityConfig()


@dataclass(frozen=True)
class VisitorIdentity:
    """Resolved identity for one request."""

    session_id: str
    is_new_visitor: bool


# --- Client IP ---


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _usable(value: str | None) -> str | None:
    """Stripped header value, or None if empty or "unknown"."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() == UNKNOWN_IP:
        return None
    return value


def extract_client_ip(headers: Mapping[str, str], peer_address: str | None) -> str:
    """
    Resolve the client IP from proxy headers or the transport peer.

    Falls back to "unknown" when nothing is available.
    """
    forwarded = _usable(get_header(headers, "X-Forwarded-For"))
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = _usable(get_header(headers, "X-Real-IP"))
    if real_ip:
        return real_ip

    return peer_address or UNKNOWN_IP


# --- Session / New Visitor ---


def epoch_millis(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return int(ts.timestamp() * 1000)


def generate_session_id(
    ip_address: str,
    now: datetime,
    config: IdentityConfig = DEFAULT_CONFIG,
) -> str:
    """Derive the session id for a request from its IP and ingestion time."""
    millis = epoch_millis(now)
    if config.session_scheme == SessionScheme.BUCKETED:
        bucket_ms = config.session_bucket_minutes * 60 * 1000
        millis = (millis // bucket_ms) * bucket_ms
    return f"{ip_address}_{millis}"


def is_new_visitor(
    latest_visit: VisitEvent | None,
    now: datetime,
    config: IdentityConfig = DEFAULT_CONFIG,
) -> bool:
    if latest_visit is None:
        return True
    cutoff = now - timedelta(days=config.new_visitor_window_days)
    return latest_visit.visit_time < cutoff


def resolve_identity(
    ip_address: str,
    now: datetime,
    latest_visit: VisitEvent | None,
    config: IdentityConfig = DEFAULT_CONFIG,
) -> VisitorIdentity:
    return VisitorIdentity(
        session_id=generate_session_id(ip_address, now, config),
        is_new_visitor=is_new_visitor(latest_visit, now, config),
    )


class IdentityResolver:
    """Resolves identity with a single most-recent-by-IP read."""

    def __init__(self, store: VisitStorePort, config: IdentityConfig | None = None) -> None:
        self._store = store
        self._config = config or DEFAULT_CONFIG

    def resolve(self, ip_address: str, now: datetime) -> VisitorIdentity:
        latest = self._store.find_latest_by_ip(ip_address)
        return resolve_identity(ip_address, now, latest, self._config)
