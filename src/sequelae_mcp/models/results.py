"""Request and result models for SQL execution and backups."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sequelae_mcp.models.errors import ErrorCode, ScriptError


class ExecutionRequest(BaseModel):
    """A single execution request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    sql: str = Field(..., description="SQL text, one or more statements")
    use_transaction: bool = Field(default=True, description="Wrap execution in a transaction")
    timeout_ms: int | None = Field(default=None, gt=0, description="Per-statement timeout in ms")


class ExecutionResult(BaseModel):
    """Result of executing a statement."""

    command: str | None = Field(None, description="Command verb, e.g. SELECT or INSERT")
    row_count: int | None = Field(None, description="Rows returned or affected")
    rows: list[dict[str, Any]] = Field(default_factory=list, description="Returned rows")
    duration_ms: float = Field(default=0.0, ge=0.0, description="Wall-clock duration in ms")


class StatementOutcome(BaseModel):
    """Outcome of one statement of a script."""

    index: int = Field(..., ge=0, description="0-based statement index")
    statement: str = Field(..., description="Statement text")
    success: bool = Field(..., description="Whether the statement succeeded")
    result: ExecutionResult | None = Field(None, description="Result when successful")
    error: dict[str, Any] | None = Field(None, description="Error detail when failed")


class ScriptResult(BaseModel):
    """Result of executing a multi-statement script.

    Once a statement fails no later statement runs. In transactional mode
    ``rolled_back`` is set and no effect of the script remains.
    """

    success: bool = Field(..., description="True when every statement succeeded")
    statement_count: int = Field(default=0, ge=0, description="Statements found in the script")
    results: list[StatementOutcome] = Field(default_factory=list, description="Per-statement")
    failed_index: int | None = Field(None, description="Index of the failing statement")
    rolled_back: bool = Field(default=False, description="Whether prior effects were undone")
    skipped_count: int = Field(default=0, ge=0, description="Statements not executed")
    total_duration_ms: float = Field(default=0.0, ge=0.0, description="Total duration in ms")
    error: dict[str, Any] | None = Field(None, description="Error detail of the failure")

    @property
    def executed_count(self) -> int:
        """Number of statements that were sent to the server."""
        return len(self.results)

    def raise_for_error(self) -> None:
        """Raise ScriptError if the script failed.

        Raises:
            ScriptError: Carrying the failing index and rollback flag.
        """
        if self.success:
            return
        error = self.error or {}
        raise ScriptError(
            message=error.get("message", "Script execution failed"),
            statement_index=self.failed_index,
            rolled_back=self.rolled_back,
            details={"cause": error.get("code", ErrorCode.INTERNAL_ERROR)},
        )


class BackupFormat(StrEnum):
    """pg_dump output formats."""

    PLAIN = "plain"
    CUSTOM = "custom"
    DIRECTORY = "directory"
    TAR = "tar"

    @property
    def flag(self) -> str:
        """Single-letter pg_dump ``--format`` value."""
        return self.value[0]


class BackupOptions(BaseModel):
    """Options for a pg_dump backup."""

    format: BackupFormat = Field(default=BackupFormat.PLAIN, description="Output format")
    tables: list[str] = Field(default_factory=list, description="Tables to include")
    schemas: list[str] = Field(default_factory=list, description="Schemas to include")
    output_path: str | None = Field(None, description="Output file or directory")
    data_only: bool = Field(default=False, description="Dump only the data")
    schema_only: bool = Field(default=False, description="Dump only the schema")
    compress: bool = Field(default=False, description="Compress the output")

    @model_validator(mode="after")
    def check_exclusive_modes(self) -> "BackupOptions":
        """Reject option combinations pg_dump cannot honour."""
        if self.data_only and self.schema_only:
            raise ValueError("data_only and schema_only are mutually exclusive")
        if self.compress and self.format == BackupFormat.TAR:
            raise ValueError("tar format does not support compression")
        return self


class BackupResult(BaseModel):
    """Result of a backup run."""

    success: bool = Field(..., description="Exit status 0 and non-empty output")
    output_path: str = Field(..., description="Backup file or directory")
    format: BackupFormat = Field(default=BackupFormat.PLAIN, description="Output format")
    size_bytes: int | None = Field(None, ge=0, description="Output size in bytes")
    duration_ms: float = Field(default=0.0, ge=0.0, description="Elapsed time in ms")
    error: str | None = Field(None, description="Error message on failure")
    error_code: ErrorCode | None = Field(None, description="Error code on failure")
