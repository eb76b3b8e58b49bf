# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

This module owns the process-wide AnalyticsService and exposes it to
endpoints as a dependency. The service is built once at startup from the
settings: SQLAlchemy-backed store, Redis or in-memory result cache, and
the analytics policy.

Example:
    @router.get("/summary")
    async def get_summary(
        service: AnalyticsService = Depends(get_analytics_service),
    ):
        ...

Tests replace the service with ``app.dependency_overrides``.
"""

import logging

from fastapi import HTTPException, status

from src.core.config import Settings
from src.domains.analytics.context import AnalyticsContextLoader
from src.domains.analytics.policy import AnalyticsPolicy, load_policy
from src.domains.analytics.service import AnalyticsService
from src.infrastructure.cache import (
    InMemoryResultCache,
    RedisResultCache,
    ResultCache,
    get_redis,
)
from src.infrastructure.database import SqlAlchemyAnalyticsStore, get_sessionmaker
from src.infrastructure.database.store import AnalyticsStore

logger = logging.getLogger(__name__)

# Analytics service singleton
_analytics_service: AnalyticsService | None = None


def build_analytics_service(
    settings: Settings,
    store: AnalyticsStore,
    cache: ResultCache | None = None,
    policy: AnalyticsPolicy | None = None,
) -> AnalyticsService:
    """Assemble an AnalyticsService from settings.

    Args:
        settings: Application settings.
        store: Backend store the loader and alert writes use.
        cache: Result cache, in-memory when None.
        policy: Analytics policy, loaded from settings when None.

    Returns:
        Configured AnalyticsService.
    """
    analytics = settings.analytics
    if policy is None:
        policy = load_policy(analytics.policy_file)

    loader = AnalyticsContextLoader(
        store,
        timeout_seconds=analytics.fetch_timeout_seconds,
        lookback_months=analytics.default_lookback_months,
    )
    return AnalyticsService(
        loader=loader,
        policy=policy,
        cache=cache if cache is not None else InMemoryResultCache(),
        store=store,
        metrics_ttl_seconds=analytics.metrics_cache_ttl_seconds,
        alerts_ttl_seconds=analytics.alerts_cache_ttl_seconds,
    )


def init_services(settings: Settings) -> AnalyticsService:
    """Build the analytics service singleton.

    Requires the database to be initialized. Uses the Redis result cache
    when Redis is enabled and connected.
    """
    global _analytics_service

    store = SqlAlchemyAnalyticsStore(get_sessionmaker(), schema=settings.database.schema_name)

    cache: ResultCache | None = None
    if settings.redis.enabled:
        cache = RedisResultCache(get_redis())
        logger.info("Using Redis result cache")

    _analytics_service = build_analytics_service(settings, store, cache)
    return _analytics_service


def close_services() -> None:
    """Drop the analytics service singleton."""
    global _analytics_service
    _analytics_service = None


def get_analytics_service() -> AnalyticsService:
    """Dependency returning the analytics service.

    Raises:
        HTTPException: 503 if the service has not been initialized.
    """
    if _analytics_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics service not initialized",
        )
    return _analytics_service
