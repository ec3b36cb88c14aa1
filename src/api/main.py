import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import get_clock, get_rules, get_settings, get_visit_rules, get_visit_store
from src.api.routes import visit_stats
from src.rules.models import TrackingRules
from src.shell.http.visit_tracking import VisitTrackingMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules and validate on startup (fail-fast)
    try:
        rules = get_rules()
    except (FileNotFoundError, ValueError):
        logger.critical("Rules load failed from %s", settings.rules_path, exc_info=True)
        raise

    logging.basicConfig(
        level=rules.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Rules loaded from %s", settings.rules_path)

    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()

    yield
    # Shutdown cleanup if needed


def get_tracking_rules() -> TrackingRules:
    return get_rules().tracking


app = FastAPI(
    title="Visit Analytics API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(visit_stats.router, prefix="/api/visit-stats", tags=["Visit Stats"])

app.add_middleware(
    VisitTrackingMiddleware,
    store_provider=get_visit_store,
    tracking_provider=get_tracking_rules,
    rules_provider=get_visit_rules,
    time_port=get_clock(),
)


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "visit-analytics"}
