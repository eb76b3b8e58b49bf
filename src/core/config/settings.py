# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

Settings are read from environment variables (and an optional ``.env``
file). Each concern owns a subsettings class with its own env prefix;
the top-level Settings object aggregates them.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.analytics.fetch_timeout_seconds
    30.0
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Backend store connection used by the analytics loader.

    The store is read-only for analytics, except for alert status
    transitions on the ``analytics_alerts`` table.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        schema_name: Schema holding the madrassah tables.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
    )

    user: str = "madrassah"
    password: SecretStr = SecretStr("madrassah_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "madrassah"
    schema_name: str = "public"
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for the analytics result cache.

    Attributes:
        enabled: Use Redis for cached results instead of process memory.
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        key_prefix: Prefix for every analytics cache key.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("")
    database: int = 0
    key_prefix: str = "madrassah:analytics"
    max_connections: int = 20

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        auth = f":{pwd}@" if pwd else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.database}"


class AnalyticsSettings(BaseSettings):
    """Runtime knobs for the analytics engine.

    Scoring constants live in the analytics policy (see
    ``src.domains.analytics.policy``); this class only covers I/O, caching
    and scheduling.

    Attributes:
        fetch_timeout_seconds: Bound on the joint collection fetch.
        default_lookback_months: Window length when no start is given.
        metrics_cache_ttl_seconds: Staleness window for metric results.
        alerts_cache_ttl_seconds: Staleness window for alert results.
        alert_refresh_enabled: Run the periodic alert refresh job.
        alert_refresh_interval_seconds: Interval of the alert refresh job.
        policy_file: Optional YAML file overriding policy defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_",
        extra="ignore",
    )

    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    default_lookback_months: int = Field(default=12, ge=1)
    metrics_cache_ttl_seconds: int = Field(default=300, ge=0)
    alerts_cache_ttl_seconds: int = Field(default=120, ge=0)
    alert_refresh_enabled: bool = True
    alert_refresh_interval_seconds: int = Field(default=300, ge=1)
    policy_file: Path | None = None


class APISettings(BaseSettings):
    """API server configuration.

    Attributes:
        host: Host to bind to.
        port: Port to listen on.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings.

    Attributes:
        environment: Deployment environment.
        debug: Enable debug mode.
        log_level: Logging level.
        database: Backend store settings.
        redis: Redis cache settings.
        analytics: Analytics engine settings.
        api: API server settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    api: APISettings = Field(default_factory=APISettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Call clear_settings_cache() to reload settings from the environment.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache so the next call re-reads the environment."""
    get_settings.cache_clear()
