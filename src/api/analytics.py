"""Recognition analytics endpoint for tenant administrators."""

from fastapi import APIRouter, Depends, Query, Request

from src.api.dependencies import admin_rate_limit, require_admin_tenant
from src.events.analytics import (
    DEFAULT_WINDOW_DAYS,
    MAX_WINDOW_DAYS,
    RecognitionAnalytics,
    RecognitionAnalyticsReport,
)

router = APIRouter(
    prefix="/recognition/analytics",
    tags=["analytics"],
    dependencies=[Depends(admin_rate_limit)],
)


def get_analytics(request: Request) -> RecognitionAnalytics:
    """Dependency to get RecognitionAnalytics from app state."""
    return request.app.state.recognition_analytics


@router.get("", response_model=RecognitionAnalyticsReport)
async def recognition_analytics(
    days: int = Query(default=DEFAULT_WINDOW_DAYS, ge=1, le=MAX_WINDOW_DAYS),
    tenant_id: str = Depends(require_admin_tenant),
    analytics: RecognitionAnalytics = Depends(get_analytics),
) -> RecognitionAnalyticsReport:
    """Recognition rates, tiers, feedback and review outcomes over the last `days` days."""
    return await analytics.summarize(tenant_id, days=days)
