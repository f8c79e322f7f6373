"""
Liveness endpoint.
"""
from fastapi import APIRouter, Depends

from legalnexus.config import Settings, get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """Liveness only; dependencies are not probed."""
    return {
        "status": "healthy",
        "service": "legal-nexus",
        "environment": settings.environment,
    }
