"""
Commerce Insights API package initialization.

This package contains the FastAPI router modules:
- analytics: manual run, latest summary/recommendations, advice
- cron: shared-secret scheduled trigger
"""

from fastapi import APIRouter

from commerce_insights.api.analytics import router as analytics_router
from commerce_insights.api.cron import router as cron_router

# Create main API router
api_router = APIRouter()

# Both routers carry their own prefixes
api_router.include_router(analytics_router)
api_router.include_router(cron_router)

__all__ = [
    "api_router",
    "analytics_router",
    "cron_router",
]
