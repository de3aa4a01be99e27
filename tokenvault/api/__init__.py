"""API routers."""

from tokenvault.api.auth import router as auth_router
from tokenvault.api.health import router as health_router
from tokenvault.api.well_known import router as well_known_router

__all__ = ["auth_router", "health_router", "well_known_router"]
