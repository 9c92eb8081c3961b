"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
mempool tracker, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mempool_tracker.classifier.classifier import MAX_HOT_SCORE
from mempool_tracker.ingestor.retry import RetryPolicy

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (used by the shared dedup backend)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class NodeSettings(BaseSettings):
    """Ethereum node endpoints."""

    model_config = SettingsConfigDict(env_prefix="NODE_", extra="ignore")

    rpc_url: str = Field(
        alias="NODE_RPC_URL",
        description="HTTP(S) JSON-RPC endpoint for transaction, block and receipt lookups",
    )
    ws_url: str = Field(
        alias="NODE_WS_URL",
        description="WebSocket endpoint for pending-transaction and new-head subscriptions",
    )
    max_requests_per_second: float = Field(
        default=25,
        alias="NODE_MAX_REQUESTS_PER_SECOND",
        gt=0,
        le=10_000,
        description="Client-side rate limit for RPC lookups",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v


class MonitorSettings(BaseSettings):
    """Classification, dedup, retry and reconnection tuning."""

    model_config = SettingsConfigDict(env_prefix="MONITOR_", extra="ignore")

    hot_transaction_threshold: float = Field(
        default=7.0,
        alias="MONITOR_HOT_TRANSACTION_THRESHOLD",
        ge=0.0,
        le=MAX_HOT_SCORE,
        description="Hot score (type weight x confidence x router bonus) at which a transaction is flagged",
    )
    dedup_backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="MONITOR_DEDUP_BACKEND",
        description="Where seen hashes are recorded; redis shares them across monitors",
    )
    dedup_ttl_seconds: int = Field(
        default=300,
        alias="MONITOR_DEDUP_TTL_SECONDS",
        ge=1,
        le=86_400,
        description="How long a hash is remembered after first admission",
    )
    reconnect_base_delay_ms: int = Field(
        default=5000,
        alias="MONITOR_RECONNECT_BASE_DELAY_MS",
        ge=1,
        le=600_000,
        description="First reconnect delay; doubles on each consecutive failure",
    )
    max_reconnect_attempts: int = Field(
        default=10,
        alias="MONITOR_MAX_RECONNECT_ATTEMPTS",
        ge=0,
        le=1000,
        description="Consecutive failed reconnects before giving up",
    )
    pending_retry_attempts: int = Field(
        default=10,
        alias="MONITOR_PENDING_RETRY_ATTEMPTS",
        ge=1,
        le=100,
        description="Attempts to fetch an announced pending transaction",
    )
    pending_retry_delay_ms: int = Field(
        default=300,
        alias="MONITOR_PENDING_RETRY_DELAY_MS",
        ge=0,
        le=60_000,
        description="Delay between pending transaction fetch attempts",
    )
    block_retry_attempts: int = Field(
        default=5,
        alias="MONITOR_BLOCK_RETRY_ATTEMPTS",
        ge=1,
        le=100,
        description="Attempts to fetch a block or receipt",
    )
    block_retry_delay_ms: int = Field(
        default=500,
        alias="MONITOR_BLOCK_RETRY_DELAY_MS",
        ge=0,
        le=60_000,
        description="Delay between block and receipt fetch attempts",
    )

    @property
    def pending_retry(self) -> RetryPolicy:
        return RetryPolicy(self.pending_retry_attempts, self.pending_retry_delay_ms / 1000)

    @property
    def block_retry(self) -> RetryPolicy:
        return RetryPolicy(self.block_retry_attempts, self.block_retry_delay_ms / 1000)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from mempool_tracker.config import get_settings

        settings = get_settings()
        print(settings.node.ws_url)
        print(settings.monitor.hot_transaction_threshold)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested groups get the same env_file, otherwise values that only live in
    # .env are invisible to them.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    node: NodeSettings = Field(
        default_factory=lambda: NodeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    monitor: MonitorSettings = Field(
        default_factory=lambda: MonitorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Classify and log without persisting anything",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Node URLs commonly embed an API key in the path, so only their
        scheme and host are shown.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "node": {
                "rpc_url": self._redact_path(self.node.rpc_url),
                "ws_url": self._redact_path(self.node.ws_url),
                "max_requests_per_second": str(self.node.max_requests_per_second),
            },
            "monitor": {
                "hot_transaction_threshold": str(self.monitor.hot_transaction_threshold),
                "dedup_backend": self.monitor.dedup_backend,
                "dedup_ttl_seconds": str(self.monitor.dedup_ttl_seconds),
                "reconnect_base_delay_ms": str(self.monitor.reconnect_base_delay_ms),
                "max_reconnect_attempts": str(self.monitor.max_reconnect_attempts),
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self) -> None:
        """Validate cross-field requirements for the ``run`` command."""
        if self.monitor.dedup_backend == "redis" and not self.redis.url:
            raise ValueError("REDIS_URL is required when MONITOR_DEDUP_BACKEND=redis")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url

    @staticmethod
    def _redact_path(url: str) -> str:
        parts = urlsplit(url)
        if not parts.path.strip("/") and not parts.query:
            return url
        return f"{parts.scheme}://{parts.hostname or ''}{f':{parts.port}' if parts.port else ''}/***"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
