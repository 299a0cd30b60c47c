"""Health check endpoints for monitoring and orchestration."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.config import settings

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class LivenessResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    """Readiness checks plus recognition cache and audit backlog figures."""

    status: str
    checks: dict[str, str]
    cache: dict[str, float | int] | None = None
    audit_pending: int | None = None


@router.get("", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=settings.app_version,
        environment=settings.app_env,
    )


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe: the process is serving requests."""
    return LivenessResponse(status="alive")


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> ReadinessResponse:
    """Readiness probe.

    Ready only when the identity database answers and the recognition
    cache sweep is scheduled. Cache hit statistics and the number of
    in-flight audit writes are reported but never fail the probe.
    """
    state = request.app.state
    checks: dict[str, str] = {"api": "ok"}

    db = getattr(state, "db", None)
    if db is None:
        checks["database"] = "not_configured"
    else:
        checks["database"] = "ok" if await db.is_healthy() else "failed"

    stats = None
    cache = getattr(state, "recognition_cache", None)
    if cache is not None:
        checks["cache_sweep"] = "ok" if cache.running else "stopped"
        stats = cache.stats()

    sink = getattr(state, "audit_sink", None)
    status = "ready" if all(v == "ok" for v in checks.values()) else "not_ready"
    return ReadinessResponse(
        status=status,
        checks=checks,
        cache=stats,
        audit_pending=len(sink) if sink is not None else None,
    )
