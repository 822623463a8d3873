"""Data models module."""

from sequelae_mcp.models.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    ErrorCode,
    ErrorDetail,
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
    ExecutionRequest,
    ExecutionResult,
    ScriptResult,
    StatementOutcome,
)
from sequelae_mcp.models.schema import ColumnInfo, ConstraintInfo, SchemaRecord

__all__ = [
    # Schema models
    "ColumnInfo",
    "ConstraintInfo",
    "SchemaRecord",
    # Execution models
    "ExecutionRequest",
    "ExecutionResult",
    "StatementOutcome",
    "ScriptResult",
    "BackupFormat",
    "BackupOptions",
    "BackupResult",
    # Error models
    "ErrorCode",
    "ErrorDetail",
    "SequelaeError",
    "ValidationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "SQLError",
    "ExecutionTimeoutError",
    "ScriptError",
    "BackupError",
]
