"""tokenvault - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tokenvault.api import auth_router, health_router, well_known_router
from tokenvault.core import async_session_maker, settings, setup_logging
from tokenvault.core.logging import get_logger
from tokenvault.middleware import SecurityHeadersMiddleware

# Import all models to ensure they're registered with Base for Alembic
from tokenvault.models import (  # noqa: F401
    Account,
    KeyPair,
    RefreshToken,
    TokenBlacklist,
)
from tokenvault.services.auth import AuthService

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


async def run_maintenance_once() -> dict[str, int]:
    """Purge expired blacklist entries and refresh records, and prune retired key pairs."""
    async with async_session_maker() as db:
        removed = await AuthService(db, settings=settings).run_maintenance()
    if any(removed.values()):
        logger.info(
            f"Maintenance removed {removed['blacklist']} blacklist entries, "
            f"{removed['refresh_tokens']} refresh tokens, {removed['key_pairs']} key pairs"
        )
    return removed


async def _maintenance_loop() -> None:
    """Periodically run token and key maintenance."""
    while True:
        await asyncio.sleep(settings.maintenance_interval_seconds)
        try:
            await run_maintenance_once()
        except Exception:
            logger.exception("Error running token maintenance")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    maintenance_task = asyncio.create_task(_maintenance_loop(), name="token-maintenance")
    maintenance_task.add_done_callback(task_done_callback)

    yield

    logger.info("Shutting down...")
    maintenance_task.cancel()
    try:
        await maintenance_task
    except asyncio.CancelledError:
        pass


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Encrypted session token service",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    # Security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    # so that CORS headers are present on ALL responses, including 401s.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
        ],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(well_known_router)
    app.include_router(auth_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "jwks": "/.well-known/jwks.json",
        }

    return app


# Application instance
app = create_app()
