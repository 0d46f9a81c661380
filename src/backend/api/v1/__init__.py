"""
API v1 router aggregating all endpoints.
"""

from fastapi import APIRouter

from api.v1.stats import router as stats_router

router = APIRouter()

router.include_router(stats_router, prefix="/stats", tags=["AC Statistics"])
