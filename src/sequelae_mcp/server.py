"""FastMCP server exposing the SQL execution engine as MCP tools.

Tools:
    sql_exec: Run SQL and return the result of its last statement.
    sql_file: Run a SQL script file statement by statement.
    sql_schema: Describe tables, with suggestions for unknown names.
    sql_backup: Dump the database with pg_dump.

Every tool returns a JSON-compatible dict with a ``success`` flag. Failures
carry an ``error`` object with ``code``, ``message`` and optional ``details``.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from pydantic import ValidationError as PydanticValidationError

from sequelae_mcp.config.settings import get_settings
from sequelae_mcp.db.pool import PoolManager
from sequelae_mcp.models.errors import (
    DatabaseConnectionError,
    ErrorCode,
    ErrorDetail,
    SequelaeError,
    ValidationError,
)
from sequelae_mcp.models.results import BackupOptions
from sequelae_mcp.observability.logging import configure_logging
from sequelae_mcp.observability.metrics import metrics
from sequelae_mcp.services.sql_executor import SQLExecutor

logger = logging.getLogger(__name__)

# Set by the lifespan while the server runs
_executor: SQLExecutor | None = None


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Build the executor on startup and close its pool on shutdown.

    Args:
        server: The FastMCP server instance.

    Raises:
        ConfigurationError: If DATABASE_URL is not set.
    """
    global _executor

    settings = get_settings()
    configure_logging(
        level=settings.observability.log_level,
        log_format=settings.observability.log_format,
    )
    if settings.observability.metrics_enabled:
        metrics.start_metrics_server(settings.observability.metrics_port)

    pool_manager = PoolManager(settings.database)
    _executor = SQLExecutor(
        pool_manager,
        settings.database,
        execution_config=settings.execution,
        backup_config=settings.backup,
        owns_pool=True,
    )
    logger.info("Server ready", extra={"database_url": settings.database.safe_url})

    try:
        yield
    finally:
        executor, _executor = _executor, None
        if executor is not None:
            await executor.close()
        logger.info("Server stopped")


def _get_executor() -> SQLExecutor:
    if _executor is None:
        raise DatabaseConnectionError("Server is not initialized")
    return _executor


def _error_response(detail: ErrorDetail) -> dict[str, Any]:
    return {"success": False, "error": detail.to_dict()}


async def _run_tool(
    tool: str, call: Callable[[SQLExecutor], Awaitable[dict[str, Any]]]
) -> dict[str, Any]:
    """Run a tool body, turning exceptions into error responses."""
    try:
        return await call(_get_executor())
    except SequelaeError as e:
        logger.warning(
            "Tool failed with known error",
            extra={"tool": tool, "error_code": e.code, "error_message": e.message},
        )
        return _error_response(e.to_error_detail())
    except Exception as e:
        logger.exception("Tool failed with unexpected error", extra={"tool": tool})
        return _error_response(
            ErrorDetail(
                code=ErrorCode.INTERNAL_ERROR,
                message=f"Internal server error: {e!s}",
                details={"error_type": type(e).__name__},
            )
        )


async def sql_exec(
    sql: str,
    use_transaction: bool = True,
    timeout_ms: int | None = None,
) -> dict[str, Any]:
    """Execute SQL against the database.

    Several statements separated by semicolons run in order on one
    connection; the result of the last one is returned.

    Args:
        sql: SQL text.
        use_transaction: Wrap execution in a transaction (rolled back on error).
        timeout_ms: Per-statement timeout in milliseconds.

    Returns:
        dict: ``command``, ``row_count``, ``rows`` and ``duration_ms``.
    """

    async def call(executor: SQLExecutor) -> dict[str, Any]:
        result = await executor.execute_query(sql, use_transaction, timeout_ms)
        return {"success": True, **result.model_dump(mode="json")}

    return await _run_tool("sql_exec", call)


async def sql_file(
    path: str,
    use_transaction: bool = True,
    timeout_ms: int | None = None,
) -> dict[str, Any]:
    """Execute a SQL script file statement by statement.

    Execution stops at the first failing statement. In transactional mode
    the whole file is rolled back.

    Args:
        path: Path of the SQL file.
        use_transaction: Run the file as a single transaction.
        timeout_ms: Per-statement timeout in milliseconds.

    Returns:
        dict: Per-statement results, ``failed_index`` and ``rolled_back``.
    """

    async def call(executor: SQLExecutor) -> dict[str, Any]:
        result = await executor.execute_file(path, use_transaction, timeout_ms)
        return result.model_dump(mode="json")

    return await _run_tool("sql_file", call)


async def sql_schema(
    tables: list[str] | None = None,
    all_schemas: bool = False,
) -> dict[str, Any]:
    """Describe database tables.

    Args:
        tables: Table names to describe; all tables when omitted.
        all_schemas: Include system schemas.

    Returns:
        dict: ``tables`` with columns and constraints, and ``missing`` with
            suggested names for tables that do not exist.
    """

    async def call(executor: SQLExecutor) -> dict[str, Any]:
        records = await executor.get_schema(tables, all_schemas)
        return {
            "success": True,
            "tables": [r.model_dump(mode="json") for r in records if r.kind == "found"],
            "missing": [
                {"table_name": r.table_name, "suggestions": r.suggestions}
                for r in records
                if r.kind == "missing"
            ],
        }

    return await _run_tool("sql_schema", call)


async def sql_backup(
    format: str = "plain",  # noqa: A002
    tables: list[str] | None = None,
    schemas: list[str] | None = None,
    output_path: str | None = None,
    data_only: bool = False,
    schema_only: bool = False,
    compress: bool = False,
) -> dict[str, Any]:
    """Back up the database with pg_dump.

    Args:
        format: plain, custom, directory or tar.
        tables: Tables to include.
        schemas: Schemas to include.
        output_path: Output file (directory for the directory format).
        data_only: Dump only data.
        schema_only: Dump only the schema.
        compress: Compress the output.

    Returns:
        dict: ``output_path``, ``size_bytes`` and ``duration_ms``, or
            ``error`` when pg_dump failed.
    """

    async def call(executor: SQLExecutor) -> dict[str, Any]:
        try:
            options = BackupOptions(
                format=format,
                tables=tables or [],
                schemas=schemas or [],
                output_path=output_path,
                data_only=data_only,
                schema_only=schema_only,
                compress=compress,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                message=f"Invalid backup options: {e.errors()[0]['msg']}",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e
        result = await executor.backup(options)
        return result.model_dump(mode="json")

    return await _run_tool("sql_backup", call)


mcp = FastMCP("sequelae", lifespan=lifespan)

mcp.tool(name="sql_exec")(sql_exec)
mcp.tool(name="sql_file")(sql_file)
mcp.tool(name="sql_schema")(sql_schema)
mcp.tool(name="sql_backup")(sql_backup)
