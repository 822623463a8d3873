"""Configuration management for sequelae-mcp.

This module defines all configuration settings using Pydantic for validation
and type safety. Configuration is loaded from environment variables (and an
optional ``.env`` file) with sensible defaults.
"""

from typing import Literal
from urllib.parse import urlsplit, urlunsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """PostgreSQL connection and pool configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(default="", description="PostgreSQL connection URI")

    # Connection pool settings
    min_pool_size: int = Field(default=1, ge=0, le=100, description="Minimum pool size")
    max_pool_size: int = Field(default=10, ge=1, le=100, description="Maximum pool size")
    pool_timeout: float = Field(
        default=30.0, ge=1.0, le=300.0, description="Pool acquire timeout in seconds"
    )
    close_timeout: float = Field(
        default=10.0, ge=0.1, le=300.0, description="Graceful pool close timeout in seconds"
    )
    ssl_mode: Literal["disable", "prefer", "require", "verify-ca", "verify-full"] = Field(
        default="prefer",
        description="TLS mode; prefer/require encrypt without verifying the certificate chain",
    )
    statement_cache_size: int = Field(
        default=100, ge=0, le=10000, description="Prepared statement cache size (0 for pgbouncer)"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the connection URI scheme when a URI is given."""
        v = v.strip()
        if v and urlsplit(v).scheme not in ("postgres", "postgresql"):
            raise ValueError("Database URL must use the postgres:// or postgresql:// scheme")
        return v

    @property
    def safe_url(self) -> str:
        """Connection URI with the password masked for logging."""
        return mask_url_password(self.url)


class ExecutionConfig(BaseSettings):
    """Statement execution policy."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    default_timeout_ms: int | None = Field(
        default=None, gt=0, description="Statement timeout applied when the caller gives none"
    )
    timeout_grace_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Extra client-side wait beyond the server statement timeout",
    )
    max_sql_in_error: int = Field(
        default=200, ge=0, le=10000, description="SQL characters included in error details"
    )


class BackupConfig(BaseSettings):
    """pg_dump backup configuration."""

    model_config = SettingsConfigDict(env_prefix="BACKUP_")

    pg_dump_path: str = Field(default="pg_dump", description="pg_dump binary name or path")
    output_dir: str = Field(default=".", description="Directory for default backup file names")
    compression_level: int = Field(
        default=6, ge=0, le=9, description="Compression level used when compression is requested"
    )
    stderr_tail: int = Field(
        default=2000, ge=0, le=100000, description="pg_dump stderr characters kept for errors"
    )


class ObservabilityConfig(BaseSettings):
    """Observability and monitoring configuration."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    metrics_enabled: bool = Field(default=False, description="Enable Prometheus metrics server")
    metrics_port: int = Field(
        default=9090, ge=1024, le=65535, description="Metrics HTTP server port"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "text"] = Field(default="text", description="Log format")


class Settings(BaseSettings):
    """Main application settings aggregating all config sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Nested configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def mask_url_password(url: str) -> str:
    """Replace the password of a connection URI with ``***``.

    Args:
        url: Connection URI, possibly containing credentials.

    Returns:
        str: The URI with any password masked.
    """
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = f"{parts.username or ''}:***@{parts.hostname or ''}"
    if parts.port is not None:
        netloc += f":{parts.port}"
    return urlunsplit(parts._replace(netloc=netloc))


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings: The global settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset global settings instance. Useful for testing."""
    global _settings
    _settings = None
