"""Admin review queue API endpoints."""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import RootModel

from src.api.dependencies import admin_rate_limit, require_admin_tenant
from src.identity.review_queue import ReviewQueueManager
from src.identity.schemas import (
    QueueStatus,
    ReviewAction,
    ReviewActionResult,
    ReviewQueuePage,
)

router = APIRouter(
    prefix="/recognition/review-queue",
    tags=["review"],
    dependencies=[Depends(admin_rate_limit)],
)


class ReviewActionRequest(RootModel[ReviewAction]):
    """An approve, reject or merge action, discriminated by "action"."""


def get_review_manager(request: Request) -> ReviewQueueManager:
    """Dependency to get ReviewQueueManager from app state."""
    return request.app.state.review_manager


@router.get("", response_model=ReviewQueuePage)
async def list_review_queue(
    status: QueueStatus = Query(default=QueueStatus.PENDING),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    tenant_id: str = Depends(require_admin_tenant),
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ReviewQueuePage:
    """List review queue items with their suggestions and profiles."""
    return await manager.list_queue(tenant_id, status=status, limit=limit, offset=offset)


@router.post("/actions", response_model=ReviewActionResult)
async def apply_review_action(
    body: ReviewActionRequest,
    tenant_id: str = Depends(require_admin_tenant),
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ReviewActionResult:
    """Approve, reject or merge a queued match suggestion."""
    return await manager.apply(tenant_id, body.root)
