"""
Boinvit API application.

Builds the FastAPI app: the /api routers, the JSON error handlers, the
middleware stack, and the two background services started with it
(payment reconciliation and realtime dashboard sync).
"""

import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from boinvit import __version__
from boinvit.api import bookings, dashboard, payments, subscriptions, webhooks
from boinvit.core.config import settings
from boinvit.core.exception_handlers import (
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from boinvit.core.exceptions import AppException
from boinvit.middleware import RateLimitMiddleware, RequestContextMiddleware, SecurityHeadersMiddleware
from boinvit.services.dashboard_sync import DashboardSyncService
from boinvit.services.query_cache import get_query_cache
from boinvit.services.realtime import RealtimeManager, SupabaseRealtimeTransport
from boinvit.services.scheduler import get_scheduler_status, shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)


async def start_realtime(app: FastAPI) -> None:
    """Open the dashboard sync channels; failures leave the API running."""
    manager = RealtimeManager(SupabaseRealtimeTransport(), query_cache=get_query_cache())
    sync = DashboardSyncService(manager)
    app.state.realtime_manager = manager
    app.state.dashboard_sync = sync

    try:
        await sync.start()
    except AppException as e:
        logger.error(f"Realtime dashboard sync failed to start: {e.message}")


async def stop_realtime(app: FastAPI) -> None:
    sync = getattr(app.state, "dashboard_sync", None)
    manager = getattr(app.state, "realtime_manager", None)
    if sync is not None:
        await sync.stop()
    if manager is not None:
        await manager.dispose()


def create_app() -> FastAPI:
    """Build the app. Tests call this directly and override dependencies."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Boinvit booking platform API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Middleware runs in reverse order of registration: CORS first, then
    # security headers, rate limiting, and request context closest to the
    # routes. The rate limiter reads the client IP itself.
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness check with scheduler and realtime state."""
        sync = getattr(app.state, "dashboard_sync", None)
        return {
            "status": "healthy",
            "version": __version__,
            "scheduler": get_scheduler_status(),
            "realtime": {
                "enabled": settings.REALTIME_ENABLED,
                "running": bool(sync and sync.is_running),
            },
        }

    @app.on_event("startup")
    async def startup_event():
        if settings.SCHEDULER_ENABLED:
            await start_scheduler()
        if settings.REALTIME_ENABLED:
            await start_realtime(app)

    @app.on_event("shutdown")
    async def shutdown_event():
        await stop_realtime(app)
        await shutdown_scheduler()

    @app.get("/", tags=["root"])
    async def root() -> dict:
        return {
            "name": settings.PROJECT_NAME,
            "version": __version__,
            "docs": "/api/docs",
        }

    app.include_router(webhooks.router, prefix="/api")
    app.include_router(payments.router, prefix="/api")
    app.include_router(subscriptions.plans_router, prefix="/api")
    app.include_router(subscriptions.router, prefix="/api")
    app.include_router(bookings.router, prefix="/api")
    app.include_router(dashboard.router, prefix="/api")
    app.include_router(dashboard.realtime_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "boinvit.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
