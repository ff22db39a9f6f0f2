"""
Configuration management for the devlog bot.

Settings are grouped per concern and read from the environment (or a
``.env`` file). Each section keeps the variable names the integrations are
usually configured with, e.g. ``GITHUB_TOKEN``, ``OPENAI_API_KEY``,
``HIVE_USERNAME`` and ``HIVE_POSTING_KEY``. Nested overrides such as
``SYNC__CHECKPOINT_POLICY`` are accepted on the root settings object.
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import Optional, List, Dict, Any

from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings


def _section_config(prefix: str) -> Dict[str, Any]:
    return {
        "env_prefix": prefix,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


class CheckpointPolicy(str, Enum):
    """When a repository checkpoint may move forward after a sync pass."""

    ADVANCE_ALWAYS = "advance_always"
    ADVANCE_ON_SUCCESS = "advance_on_success"


class DatabaseSettings(BaseSettings):
    """Database configuration settings."""

    model_config = _section_config("DATABASE_")

    url: str = Field(
        default="sqlite+aiosqlite:///./data/devlog.db",
        description="Async SQLAlchemy database URL",
    )
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum overflow connections")
    pool_timeout: int = Field(default=30, description="Connection pool timeout")
    pool_recycle: int = Field(default=3600, description="Connection pool recycle time")
    echo: bool = Field(default=False, description="Enable SQL logging")

    @field_validator("url")
    @classmethod
    def validate_database_url(cls, v):
        if v.startswith(("postgresql://", "postgres://")):
            return "postgresql+asyncpg://" + v.split("://", 1)[1]
        if v.startswith("sqlite://"):
            return "sqlite+aiosqlite://" + v.split("://", 1)[1]
        if not v.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://")):
            raise ValueError("Database URL must be SQLite or PostgreSQL")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class RedisSettings(BaseSettings):
    """Redis settings; only used for cross-process sync locks."""

    model_config = _section_config("REDIS_")

    url: Optional[str] = Field(default=None, description="Redis connection URL")
    lock_timeout: int = Field(default=600, description="Lease time of a sync lock in seconds")
    blocking_timeout: int = Field(default=30, description="Seconds to wait for a sync lock")
    socket_connect_timeout: int = Field(default=5, description="Socket connect timeout")
    socket_timeout: int = Field(default=5, description="Socket timeout")

    @field_validator("url")
    @classmethod
    def validate_redis_url(cls, v):
        if v and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must use redis://, rediss:// or unix://")
        return v or None


class GitHubSettings(BaseSettings):
    """GitHub REST API configuration settings."""

    model_config = _section_config("GITHUB_")

    token: Optional[SecretStr] = Field(default=None, description="GitHub access token")
    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    per_page: int = Field(default=100, ge=1, le=100, description="Commits per page")
    max_pages: int = Field(default=10, ge=1, description="Maximum pages fetched per repository")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout")
    retry_attempts: int = Field(default=3, ge=1, description="Attempts per request")
    retry_backoff: float = Field(default=1.0, ge=0, description="Base backoff between attempts")

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("GitHub API URL must be HTTP/HTTPS")
        return v.rstrip("/")


class OpenAISettings(BaseSettings):
    """OpenAI configuration settings."""

    model_config = _section_config("OPENAI_")

    api_key: Optional[SecretStr] = Field(default=None, description="OpenAI API key")
    model: str = Field(default="gpt-4o", description="Chat completion model")
    temperature: float = Field(default=0.7, ge=0, le=2, description="Sampling temperature")
    max_tokens: int = Field(default=2000, ge=1, description="Maximum tokens per response")
    timeout: float = Field(default=60.0, gt=0, description="Request timeout")
    default_tags: List[str] = Field(
        default=["devlog", "development", "opensource"],
        description="Tags used when the model returns none",
    )


class HiveSettings(BaseSettings):
    """Hive publishing configuration settings."""

    model_config = _section_config("HIVE_")

    username: Optional[str] = Field(default=None, description="Hive account that publishes posts")
    posting_key: Optional[SecretStr] = Field(default=None, description="Hive posting key (WIF)")
    api_url: str = Field(default="https://api.hive.blog", description="Hive API node")
    app_name: str = Field(default="devlog-bot/1.0.0", description="App tag in post metadata")
    community_tag: str = Field(default="devlog", description="Parent permlink when a post has no tags")
    frontend_url: str = Field(default="https://hive.blog", description="Base URL for post links")
    beneficiaries: List[Dict[str, Any]] = Field(
        default_factory=list, description="Beneficiaries as [{account, weight}]"
    )
    permlink_max_attempts: int = Field(default=3, ge=1, description="Permlink collision retries")
    timeout: float = Field(default=30.0, gt=0, description="Broadcast timeout")

    @field_validator("api_url", "frontend_url")
    @classmethod
    def validate_urls(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("Hive URLs must be HTTP/HTTPS")
        return v.rstrip("/")

    @field_validator("beneficiaries")
    @classmethod
    def validate_beneficiaries(cls, v):
        for entry in v:
            if "account" not in entry or "weight" not in entry:
                raise ValueError("Each beneficiary needs an account and a weight")
            if not 0 < int(entry["weight"]) <= 10000:
                raise ValueError("Beneficiary weight must be between 1 and 10000")
        return sorted(v, key=lambda entry: entry["account"])


class SyncSettings(BaseSettings):
    """Commit synchronization settings."""

    model_config = _section_config("SYNC_")

    default_lookback_days: int = Field(
        default=7, ge=1, description="Lookback window for repositories never synced"
    )
    checkpoint_policy: CheckpointPolicy = Field(
        default=CheckpointPolicy.ADVANCE_ALWAYS,
        description="advance_always or advance_on_success",
    )

    @field_validator("checkpoint_policy", mode="before")
    @classmethod
    def normalize_policy(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v


class MonitoringSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = _section_config("MONITORING_")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class ServiceSettings(BaseSettings):
    """HTTP service settings."""

    model_config = _section_config("SERVICE_")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Dashboard API port")
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")
    request_timeout: int = Field(default=30, description="CLI request timeout")
    reload: bool = Field(default=False, description="Auto-reload on code changes")


class FileSettings(BaseSettings):
    """Locations of the file-backed config documents."""

    model_config = _section_config("FILE_")

    config_path: str = Field(default="config.json", description="Bot settings document")
    repositories_path: str = Field(default="repos.json", description="Repository list document")


class Settings(BaseSettings):
    """
    Main application settings.

    Sections are built from their own prefixed variables; the root also
    accepts ``SECTION__FIELD`` overrides.
    """

    app_name: str = Field(default="Devlog Bot", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    hive: HiveSettings = Field(default_factory=HiveSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    file: FileSettings = Field(default_factory=FileSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        valid_environments = ["development", "testing", "staging", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v

    @field_validator("debug")
    @classmethod
    def validate_debug_mode(cls, v, info):
        if info.data.get("environment") == "production" and v:
            raise ValueError("Debug mode cannot be enabled in production")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Example:
        >>> settings = get_settings()
        >>> print(settings.database.url)
        >>> print(settings.sync.checkpoint_policy)
    """
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from the monitoring section."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.monitoring.log_level),
        format=settings.monitoring.log_format,
    )


def _has_secret(value: Optional[SecretStr]) -> bool:
    return bool(value and value.get_secret_value().strip())


def validate_configuration(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Validate the configuration and report which integrations are usable.

    Returns:
        Dict[str, Any]: ``valid``, ``errors``, ``warnings`` and per-service status

    Example:
        >>> validation = validate_configuration()
        >>> if not validation['valid']:
        >>>     print("Configuration errors:", validation['errors'])
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    github_ready = _has_secret(settings.github.token)
    openai_ready = _has_secret(settings.openai.api_key)
    hive_ready = bool(settings.hive.username) and _has_secret(settings.hive.posting_key)

    if not github_ready:
        message = "GITHUB_TOKEN is not set; commit sync is unavailable"
        (errors if settings.is_production else warnings).append(message)
    if not openai_ready:
        warnings.append("OPENAI_API_KEY is not set; summary generation is unavailable")
    if not hive_ready:
        warnings.append("HIVE_USERNAME/HIVE_POSTING_KEY are not set; publishing is unavailable")
    if settings.is_production and settings.database.is_sqlite:
        warnings.append("SQLite is not recommended in production")
    if settings.is_production and settings.debug:
        errors.append("Debug mode cannot be enabled in production")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "environment": settings.environment,
        "services": {
            "database": "sqlite" if settings.database.is_sqlite else "postgresql",
            "redis": "configured" if settings.redis.url else "local_locks",
            "github": "configured" if github_ready else "missing",
            "openai": "configured" if openai_ready else "missing",
            "hive": "configured" if hive_ready else "missing",
        },
    }


def export_config(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Export configuration for the dashboard and monitoring.

    Returns:
        Dict[str, Any]: Configuration export (without sensitive data)
    """
    settings = settings or get_settings()
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "debug": settings.debug,
        "database": {
            "backend": "sqlite" if settings.database.is_sqlite else "postgresql",
            "echo": settings.database.echo,
        },
        "redis": {"enabled": bool(settings.redis.url)},
        "github": {
            "api_url": settings.github.api_url,
            "per_page": settings.github.per_page,
            "max_pages": settings.github.max_pages,
        },
        "openai": {
            "model": settings.openai.model,
            "temperature": settings.openai.temperature,
            "max_tokens": settings.openai.max_tokens,
        },
        "hive": {
            "username": settings.hive.username,
            "api_url": settings.hive.api_url,
            "app_name": settings.hive.app_name,
        },
        "sync": {
            "default_lookback_days": settings.sync.default_lookback_days,
            "checkpoint_policy": settings.sync.checkpoint_policy.value,
        },
        "monitoring": {"log_level": settings.monitoring.log_level},
        "service": {"host": settings.service.host, "port": settings.service.port},
    }


if __name__ == "__main__":
    """Configuration validation script."""
    import json

    validation = validate_configuration()
    config_export = export_config()

    print("Configuration Validation:")
    print(json.dumps(validation, indent=2))

    print("\nConfiguration Export:")
    print(json.dumps(config_export, indent=2))

    if not validation["valid"]:
        exit(1)
