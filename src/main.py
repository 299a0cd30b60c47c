"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.errors import register_exception_handlers
from src.api.router import api_router
from src.config import settings
from src.db.turso import TursoClient
from src.events.analytics import RecognitionAnalytics
from src.events.audit_sink import EventAuditSink
from src.events.store import EventStore
from src.identity.cache import RecognitionCache
from src.identity.engine import RecognitionEngine
from src.identity.review_queue import ReviewQueueManager
from src.repositories.profile_repo import ProfileRepository
from src.security.access import ApiKeyAccessValidator
from src.security.rate_limit import RateLimiter

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _initialize_security(app: FastAPI) -> None:
    """Set up the tenant access validator and per-surface rate limiters."""
    app.state.access_validator = ApiKeyAccessValidator(
        settings.tenant_api_keys, settings.tenant_admin_keys
    )
    app.state.recognition_limiter = RateLimiter(
        limit=settings.recognition_rate_limit,
        window_seconds=settings.recognition_rate_window_seconds,
    )
    app.state.admin_limiter = RateLimiter(
        limit=settings.admin_rate_limit,
        window_seconds=settings.admin_rate_window_seconds,
    )
    if not settings.tenant_api_keys:
        logger.warning("No tenant API keys configured; all tenant requests will be denied")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan management.

    Startup:
    - Initialize database connection
    - Initialize audit event store and sink
    - Initialize profile repository tables
    - Start recognition cache sweep
    - Wire recognition engine, review queue manager and analytics

    Shutdown:
    - Stop cache sweep, flush pending audit writes
    - Close database connection
    """
    # Startup
    logger.info("Starting Progressive Recognition Service...")

    db = TursoClient()
    await db.connect()
    app.state.db = db

    event_store = EventStore(db)
    await event_store.init_schema()
    audit_sink = EventAuditSink(event_store)
    app.state.event_store = event_store
    app.state.audit_sink = audit_sink
    logger.info("Audit event store initialized")

    profile_repo = ProfileRepository(db)
    await profile_repo.initialize()
    app.state.profile_repo = profile_repo
    logger.info("Profile repository initialized")
    app.state.recognition_analytics = RecognitionAnalytics(db, identity_store=profile_repo)

    cache = RecognitionCache(
        ttl_seconds=settings.recognition_cache_ttl_seconds,
        max_entries=settings.recognition_cache_max_entries,
        sweep_interval_seconds=settings.recognition_cache_sweep_seconds,
    )
    cache.start()
    app.state.recognition_cache = cache

    app.state.recognition_engine = RecognitionEngine(
        store=profile_repo,
        cache=cache,
        audit=audit_sink,
        store_timeout_seconds=settings.identity_store_timeout_seconds,
        redaction_salt=settings.audit_redaction_salt,
        confirm_boost=settings.confirm_confidence_boost,
        decline_penalty=settings.decline_confidence_penalty,
    )
    app.state.review_manager = ReviewQueueManager(
        store=profile_repo,
        audit=audit_sink,
        cache=cache,
        reject_penalty=settings.reject_confidence_penalty,
        redaction_salt=settings.audit_redaction_salt,
    )
    _initialize_security(app)
    logger.info("Recognition engine and review queue initialized")

    yield

    # Shutdown
    logger.info("Shutting down Progressive Recognition Service...")
    cache.stop()
    await audit_sink.drain()
    await db.close()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.app_name,
    description="Progressive recognition of returning form submitters",
    version=settings.app_version,
    lifespan=lifespan,
)

register_exception_handlers(app)
app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
