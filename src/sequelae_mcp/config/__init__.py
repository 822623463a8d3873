"""Configuration management module."""

from sequelae_mcp.config.settings import (
    BackupConfig,
    DatabaseConfig,
    ExecutionConfig,
    ObservabilityConfig,
    Settings,
    get_settings,
    mask_url_password,
    reset_settings,
)

__all__ = [
    "BackupConfig",
    "DatabaseConfig",
    "ExecutionConfig",
    "ObservabilityConfig",
    "Settings",
    "get_settings",
    "mask_url_password",
    "reset_settings",
]
