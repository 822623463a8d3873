"""sequelae-mcp - SQL execution engine for Postgres with an MCP tool surface.

Runs arbitrary SQL and multi-statement scripts under a transaction and
timeout policy, introspects schema with suggestions for mistyped table
names, and produces backups through pg_dump.
"""

__version__ = "0.1.0"

from sequelae_mcp.config.settings import Settings, get_settings
from sequelae_mcp.models.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    ErrorCode,
    ExecutionTimeoutError,
    ScriptError,
    SequelaeError,
    SQLError,
    ValidationError,
)
from sequelae_mcp.models.results import (
    BackupFormat,
    BackupOptions,
    BackupResult,
    ExecutionResult,
    ScriptResult,
)
from sequelae_mcp.models.schema import SchemaRecord

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    # Models
    "ExecutionResult",
    "ScriptResult",
    "SchemaRecord",
    "BackupFormat",
    "BackupOptions",
    "BackupResult",
    # Errors
    "SequelaeError",
    "ValidationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "SQLError",
    "ExecutionTimeoutError",
    "ScriptError",
    "BackupError",
    "ErrorCode",
]
