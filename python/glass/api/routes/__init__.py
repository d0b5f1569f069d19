"""API route definitions.

Uses a factory so importing route modules does not load settings.
"""

from fastapi import APIRouter

from glass.api.routes.auth import router as auth_router
from glass.api.routes.health import router as health_router
from glass.api.routes.keys import router as keys_router
from glass.api.routes.me import router as me_router
from glass.api.routes.models import router as models_router
from glass.api.routes.presets import router as presets_router
from glass.api.routes.sessions import router as sessions_router


def create_api_router() -> APIRouter:
    """Create the API router with all routes registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(me_router, tags=["user"])
    api_router.include_router(auth_router, tags=["auth"])
    api_router.include_router(models_router, tags=["models"])
    api_router.include_router(keys_router, tags=["keys"])
    api_router.include_router(presets_router, tags=["presets"])
    api_router.include_router(sessions_router, tags=["sessions"])
    return api_router


__all__ = ["create_api_router"]
