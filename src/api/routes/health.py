# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides health and readiness endpoints for the API.
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel, Field

from src.core.config import get_settings
from src.infrastructure.cache import RedisError, get_redis
from src.infrastructure.database import check_database_connection

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class ComponentHealth(BaseModel):
    """Individual component health status."""
    status: str = Field(description="Component status")
    latency_ms: float | None = Field(None, description="Response latency in ms")
    message: str | None = Field(None, description="Additional status message")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(description="Overall health status")
    timestamp: datetime = Field(description="Current server timestamp")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    components: dict[str, ComponentHealth] = Field(default_factory=dict)


async def check_database() -> ComponentHealth:
    """Check the backend store connection."""
    start = time.time()
    if not await check_database_connection():
        return ComponentHealth(status="unhealthy", message="Database unreachable")
    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


async def check_redis() -> ComponentHealth:
    """Check the Redis result cache connection."""
    try:
        client = get_redis()
    except RedisError as e:
        return ComponentHealth(status="unhealthy", message=str(e))

    start = time.time()
    if not await client.ping():
        logger.error("Redis health check failed")
        return ComponentHealth(status="unhealthy", message="Redis did not answer ping")
    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check if the API is healthy with component details.

    Redis is only checked when the Redis result cache is enabled.
    """
    settings = get_settings()

    components = {"database": await check_database()}
    if settings.redis.enabled:
        components["redis"] = await check_redis()

    healthy = all(c.status == "healthy" for c in components.values())
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        uptime_seconds=int(time.time() - _server_start_time),
        components=components,
    )
