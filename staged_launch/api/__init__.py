"""API router aggregation."""

from fastapi import APIRouter

from staged_launch.api import health, launch

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(launch.router, prefix="/launch", tags=["launch"])

__all__ = ["api_router"]
