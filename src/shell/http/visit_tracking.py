"""
Visit tracking middleware.

Records every inbound request as a visit before it is handled, then attaches
the response status and elapsed milliseconds once it completes.

Key behaviors:
- Fail-open: a tracking failure never changes the response
- Excluded path prefixes (health checks, docs, the stats API) are not recorded
- A request that raises is completed with status 500 before re-raising
- Store calls run in the threadpool so the event loop never blocks on SQLite
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from src.components.visits import (
    CompleteResponseInput,
    RecordVisitInput,
    RulesPort,
    TimePort,
    VisitStorePort,
    run_complete_response,
    run_record,
)
from src.rules.models import TrackingRules

logger = logging.getLogger(__name__)


def is_excluded(path: str, exclude_paths: Sequence[str]) -> bool:
    """Match excluded prefixes on path segment boundaries."""
    for prefix in exclude_paths:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class VisitTrackingMiddleware(BaseHTTPMiddleware):
    """Records each request through the visits component."""

    def __init__(
        self,
        app: ASGIApp,
        store_provider: Callable[[], VisitStorePort],
        tracking_provider: Callable[[], TrackingRules],
        rules_provider: Callable[[], RulesPort | None] | None = None,
        time_port: TimePort | None = None,
    ) -> None:
        super().__init__(app)
        self._store_provider = store_provider
        self._tracking_provider = tracking_provider
        self._rules_provider = rules_provider
        self._time_port = time_port

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        try:
            tracking = self._tracking_provider()
            store = self._store_provider()
            rules = self._rules_provider() if self._rules_provider else None
        except Exception:
            logger.exception("Visit tracking unavailable; serving request untracked")
            return await call_next(request)

        if not tracking.enabled or is_excluded(request.url.path, tracking.exclude_paths):
            return await call_next(request)

        started = time.perf_counter()
        user_id = getattr(request.state, "user_id", None)

        recorded = await run_in_threadpool(
            run_record,
            RecordVisitInput(
                url=request.url.path,
                query_string=request.url.query or None,
                headers=dict(request.headers),
                peer_address=request.client.host if request.client else None,
                http_method=request.method,
                user_id=user_id if isinstance(user_id, int) else None,
            ),
            store=store,
            time_port=self._time_port,
            rules=rules,
        )

        try:
            response = await call_next(request)
        except Exception:
            await self._complete(store, recorded.handle, 500, started)
            raise

        await self._complete(store, recorded.handle, response.status_code, started)
        return response

    async def _complete(
        self,
        store: VisitStorePort,
        handle: int | None,
        status_code: int,
        started: float,
    ) -> None:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await run_in_threadpool(
            run_complete_response,
            CompleteResponseInput(handle=handle, status_code=status_code, elapsed_ms=elapsed_ms),
            store=store,
        )
