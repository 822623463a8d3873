"""Custom exceptions and error codes for sequelae-mcp.

This module defines a hierarchy of exceptions for the failure kinds of the
execution engine and error codes for structured error reporting. Every
exception carries a stable code so callers can classify failures without
parsing messages.
"""

from enum import StrEnum
from typing import Any

import asyncpg


class ErrorCode(StrEnum):
    """Standardized error codes for the application."""

    # Client errors
    VALIDATION_FAILED = "validation_failed"

    # Environment errors
    CONFIGURATION_ERROR = "configuration_error"
    DATABASE_CONNECTION_ERROR = "database_connection_error"

    # Execution errors
    SQL_ERROR = "sql_error"
    EXECUTION_TIMEOUT = "execution_timeout"
    SCRIPT_FAILED = "script_failed"
    BACKUP_FAILED = "backup_failed"

    INTERNAL_ERROR = "internal_error"


class ErrorDetail:
    """Structured error detail information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize error detail.

        Args:
            code: Error code identifier.
            message: Human-readable error message.
            details: Optional additional context.
        """
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            dict: Dictionary containing error information.
        """
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"ErrorDetail(code={self.code}, message={self.message!r})"


class SequelaeError(Exception):
    """Base exception for all sequelae-mcp errors.

    All custom exceptions in this application inherit from this class.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize base error.

        Args:
            message: Human-readable error message.
            code: Error code identifier.
            details: Optional additional context.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_error_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail.

        Returns:
            ErrorDetail: Structured error detail.
        """
        return ErrorDetail(code=self.code, message=self.message, details=self.details)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, message={self.message!r})"


class ValidationError(SequelaeError):
    """Exception raised for invalid caller input (bad names, options, paths)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.VALIDATION_FAILED, details=details)


class ConfigurationError(SequelaeError):
    """Exception raised when the environment is misconfigured.

    This includes:
    - Missing or malformed connection string
    - pg_dump binary not found on the search path
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.CONFIGURATION_ERROR, details=details)


class DatabaseConnectionError(SequelaeError):
    """Exception raised when a connection cannot be acquired.

    Network, TLS and authentication failures end up here. They are never
    retried internally.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.DATABASE_CONNECTION_ERROR, details=details)


class SQLError(SequelaeError):
    """Exception raised when the database rejects or fails a statement.

    Attributes:
        position: 1-based character offset into the statement reported by
            the server, if any.
    """

    def __init__(
        self,
        message: str,
        position: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize SQL error.

        Args:
            message: Server error message.
            position: Optional character offset of the error.
            details: Optional error details (sqlstate, hint, sql).
        """
        details = dict(details or {})
        if position is not None:
            details["position"] = position
        super().__init__(message=message, code=ErrorCode.SQL_ERROR, details=details)
        self.position = position

    @classmethod
    def from_postgres(
        cls, error: asyncpg.PostgresError, sql: str, max_sql: int = 200
    ) -> "SQLError":
        """Build an SQLError from an asyncpg server error.

        Args:
            error: The asyncpg error raised by the driver.
            sql: Statement that failed.
            max_sql: Number of SQL characters kept in the details.

        Returns:
            SQLError: Wrapped error carrying sqlstate, hint and position.
        """
        raw_position = getattr(error, "position", None)
        try:
            position = int(raw_position) if raw_position is not None else None
        except (TypeError, ValueError):
            position = None

        details: dict[str, Any] = {"sqlstate": getattr(error, "sqlstate", None)}
        for field in ("detail", "hint"):
            value = getattr(error, field, None)
            if value:
                details[field] = value
        if max_sql:
            details["sql"] = sql[:max_sql]

        message = getattr(error, "message", None) or str(error)
        return cls(message=message, position=position, details=details)


class ExecutionTimeoutError(SequelaeError):
    """Exception raised when a statement exceeds its allotted time."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.EXECUTION_TIMEOUT, details=details)


class ScriptError(SequelaeError):
    """Exception raised for a failed multi-statement script.

    Attributes:
        statement_index: 0-based index of the failing statement, or None when
            the failure happened at COMMIT.
        rolled_back: Whether the effects of earlier statements were undone.
    """

    def __init__(
        self,
        message: str,
        statement_index: int | None,
        rolled_back: bool,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        details.update({"statement_index": statement_index, "rolled_back": rolled_back})
        super().__init__(message=message, code=ErrorCode.SCRIPT_FAILED, details=details)
        self.statement_index = statement_index
        self.rolled_back = rolled_back


class BackupError(SequelaeError):
    """Exception raised when pg_dump fails or its output cannot be written."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.BACKUP_FAILED, details=details)
