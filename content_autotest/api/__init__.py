"""
API routers for the content automation engine.
"""

from fastapi import APIRouter

from content_autotest.api.automation import router as automation_router

api_router = APIRouter()
api_router.include_router(automation_router, prefix="/automation", tags=["automation"])

__all__ = [
    "api_router",
    "automation_router",
]
