"""API route aggregation.

All routers registered here get mounted in main.py under /api.

Learn: The dashboard's fallback poller calls POST /api/reports/refresh,
so the prefix is /api rather than a versioned path.
"""

from fastapi import APIRouter

from livereports.api.health import router as health_router
from livereports.api.notifications import router as notifications_router
from livereports.api.reports import router as reports_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(reports_router, tags=["reports"])
api_router.include_router(notifications_router, tags=["notifications"])
