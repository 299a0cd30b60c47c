"""API router aggregation."""

from fastapi import APIRouter

from src.api.analytics import router as analytics_router
from src.api.health import router as health_router
from src.api.recognition import router as recognition_router
from src.api.review import router as review_router

api_router = APIRouter()
api_router.include_router(health_router)
# Public form recognition endpoints
api_router.include_router(recognition_router)
# Admin review queue endpoints
api_router.include_router(review_router)
# Admin analytics endpoints
api_router.include_router(analytics_router)
