"""
API Router configuration
"""

from fastapi import APIRouter

from app.api.v1 import (
    health,
    maintenance,
    transcript,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(transcript.router, prefix="/transcript", tags=["transcript"])
api_router.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
