# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the application factory for the madrassah
analytics API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI

from src.api.dependencies import close_services, init_services
from src.api.routes import health
from src.api.v1 import router as v1_router
from src.core.config import get_settings
from src.infrastructure.background import start_scheduler, stop_scheduler
from src.infrastructure.cache import RedisError, close_redis, init_redis
from src.infrastructure.database import DatabaseError, close_database, init_database
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Initializes and cleans up:
    - Logging
    - Database connection pool
    - Redis result cache (when enabled)
    - Analytics service
    - APScheduler alert refresh job (when enabled)

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings = get_settings()
    setup_logging(settings)
    logger.info(
        "Starting madrassah analytics API",
        extra={"environment": settings.environment, "debug": settings.debug},
    )

    # =========================================================================
    # Startup
    # =========================================================================

    try:
        await init_database(settings)
        logger.info("Database connection initialized")
    except DatabaseError as e:
        logger.warning("Failed to initialize database connection: %s", e)

    if settings.redis.enabled:
        try:
            await init_redis(settings)
            logger.info("Redis connection initialized")
        except RedisError as e:
            logger.warning("Failed to initialize Redis, falling back to in-memory cache: %s", e)
            settings = settings.model_copy(
                update={"redis": settings.redis.model_copy(update={"enabled": False})}
            )

    service = None
    try:
        service = init_services(settings)
        logger.info("Analytics service initialized")
    except DatabaseError as e:
        logger.warning("Analytics service unavailable: %s", e)

    if service is not None and settings.analytics.alert_refresh_enabled:
        await start_scheduler(service, settings.analytics.alert_refresh_interval_seconds)
        logger.info("Scheduler started")

    yield

    # =========================================================================
    # Shutdown
    # =========================================================================

    # Stop scheduler first (its jobs use the service)
    await stop_scheduler()
    close_services()

    try:
        await close_redis()
    except RedisError as e:
        logger.warning("Error closing Redis: %s", e)

    await close_database()
    logger.info("Shutting down madrassah analytics API")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Madrassah Analytics API",
        description="Student, class, teacher and program analytics with threshold alerts",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    # =========================================================================
    # Routes
    # =========================================================================

    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        log_config=None,
    )
