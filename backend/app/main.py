"""
Dialogs - Main FastAPI Application
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from .config import settings
from .api import (
    messages_router, sessions_router, directory_router, admin_router, telegram_router, realtime_router
)
from .core.logging_config import setup_logging, install_exception_guard
from .middleware import RequestLoggingMiddleware
from .services import Services, build_services

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    setup_logging(settings)
    install_exception_guard()

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    services: Services = app.state.services

    # Warm the directory cache; failures keep an empty snapshot
    await services.resolver.ensure_fresh()

    if services.bot is not None and settings.telegram_webhook_url:
        try:
            await services.bot.set_webhook(settings.telegram_webhook_url)
            logger.info(f"Telegram webhook registered at {settings.telegram_webhook_url}")
        except Exception:
            logger.exception("Failed to register Telegram webhook")

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Storage path: {settings.local_storage_path}")
    logger.info(f"Telegram bot: {'enabled' if services.handlers else 'disabled'}")
    logger.info(f"Directory entries: {len(services.resolver.snapshot)}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    yield
    # Shutdown
    services.bus.close_all()
    logger.info(f"Shutting down {settings.app_name}")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Pre-built services (tests); built from settings at startup otherwise
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Records bot conversations and publishes them live",
        lifespan=lifespan
    )
    app.state.services = services

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add request logging middleware (after CORS)
    if settings.log_api_requests:
        app.add_middleware(RequestLoggingMiddleware)

    # Include routers
    app.include_router(messages_router)
    app.include_router(sessions_router)
    app.include_router(directory_router)
    app.include_router(admin_router)
    app.include_router(telegram_router)
    app.include_router(realtime_router)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": settings.app_name,
            "version": settings.app_version,
            "status": "running",
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        services: Services = request.app.state.services
        try:
            await services.store.list_sessions()
            storage_ok = True
        except Exception:
            logger.exception("Health check: storage unavailable")
            storage_ok = False
        return {
            "status": "healthy" if storage_ok else "degraded",
            "storage": settings.storage_type,
            "directory_entries": len(services.resolver.snapshot),
            "realtime_connections": services.bus.connection_count,
            "version": settings.app_version
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
