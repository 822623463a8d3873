"""SQL executor for PostgreSQL statements and scripts.

This module runs caller-supplied SQL on a pooled connection under a
transaction and timeout policy, executes multi-statement scripts with
fail-fast semantics, and serializes results to JSON-compatible values.
Schema introspection and backups are delegated to their own components.
"""

import asyncio
import contextlib
import datetime
import decimal
import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Iterable, Mapping, Sequence
from os import PathLike
from typing import Any, TypeVar

import anyio
import asyncpg
from asyncpg import Connection
from pydantic import ValidationError as PydanticValidationError

from sequelae_mcp.config.settings import BackupConfig, DatabaseConfig, ExecutionConfig
from sequelae_mcp.db.introspection import SchemaIntrospector
from sequelae_mcp.db.pool import PoolManager
from sequelae_mcp.models.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionTimeoutError,
    SequelaeError,
    SQLError,
    ValidationError,
)
from sequelae_mcp.models.results import (
    BackupOptions,
    BackupResult,
    ExecutionRequest,
    ExecutionResult,
    ScriptResult,
    StatementOutcome,
)
from sequelae_mcp.models.schema import SchemaRecord
from sequelae_mcp.observability.metrics import metrics
from sequelae_mcp.services.backup import BackupOrchestrator, record_backup_metrics
from sequelae_mcp.services.statement_splitter import split_statements

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors meaning the connection itself is unusable.
_CONNECTION_LOST = (asyncpg.InterfaceError, OSError)


class _ScriptAborted(Exception):
    """Stops a script; raised inside the transaction scope so it rolls back."""


def parse_status(status: str | None) -> tuple[str | None, int | None]:
    """Split a command status tag into verb and row count.

    Args:
        status: Server status tag such as ``INSERT 0 3`` or ``CREATE TABLE``.

    Returns:
        tuple: (command verb, row count or None).

    Example:
        >>> parse_status("INSERT 0 3")
        ('INSERT', 3)
        >>> parse_status("CREATE TABLE")
        ('CREATE', None)
    """
    if not status:
        return None, None
    parts = status.split()
    row_count = int(parts[-1]) if len(parts) > 1 and parts[-1].isdigit() else None
    return parts[0].upper(), row_count


def serialize_value(value: Any) -> Any:
    """Recursively serialize a single value to a JSON-compatible type.

    - datetime types: converted to ISO format strings
    - timedelta: converted to its string form
    - decimal.Decimal: converted to float
    - uuid.UUID: converted to string
    - bytes: converted to hexadecimal string
    - asyncpg.Range: converted to a dict of bounds
    - asyncpg.Record (composite values): converted to a dict
    - bit strings: converted to a string of 0/1 digits
    - geometric types, lists, tuples and dicts: serialized recursively
    - anything else that is not a JSON scalar: converted with ``str``
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value

    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()

    if isinstance(value, datetime.timedelta):
        return str(value)

    if isinstance(value, decimal.Decimal):
        return float(value)

    if isinstance(value, uuid.UUID):
        return str(value)

    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()

    if isinstance(value, asyncpg.Range):
        return {
            "lower": serialize_value(value.lower),
            "upper": serialize_value(value.upper),
            "lower_inc": value.lower_inc,
            "upper_inc": value.upper_inc,
            "empty": value.isempty,
        }

    if isinstance(value, asyncpg.BitString):
        return value.as_string().replace(" ", "")

    # Point, Box, Circle and friends are tuples; Path and Polygon iterate points
    if isinstance(value, (list, tuple, asyncpg.Path)):
        return [serialize_value(v) for v in value]

    if isinstance(value, (dict, asyncpg.Record)):
        return {k: serialize_value(v) for k, v in value.items()}

    return str(value)


def serialize_rows(records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Convert asyncpg records into JSON-compatible dictionaries.

    Args:
        records: Rows returned by the driver.

    Returns:
        list: One dict per row, column order preserved.
    """
    return [
        {key: serialize_value(value) for key, value in dict(record).items()} for record in records
    ]


class SQLExecutor:
    """Executes SQL against one database through a shared pool.

    Every operation borrows one connection and returns it on every exit
    path. Statement timeouts are applied per session with
    ``SET statement_timeout`` and reset before the connection goes back to
    the pool, so they never leak to a later borrower.

    Example:
        >>> executor = SQLExecutor(pool_manager, db_config)
        >>> result = await executor.execute_query("SELECT id, name FROM users")
        >>> print(f"{result.command}: {result.row_count} rows")
        >>> script = await executor.execute_file("migrations/001_init.sql")
        >>> script.raise_for_error()
    """

    def __init__(
        self,
        pool_manager: PoolManager,
        db_config: DatabaseConfig,
        execution_config: ExecutionConfig | None = None,
        backup_config: BackupConfig | None = None,
        backup_orchestrator: BackupOrchestrator | None = None,
        owns_pool: bool = False,
    ) -> None:
        """Initialize SQL executor.

        Args:
            pool_manager: Pool manager providing connections.
            db_config: Database configuration; its URL must be set.
            execution_config: Timeout and error-reporting policy.
            backup_config: pg_dump configuration.
            backup_orchestrator: Backup runner; built from the URL if omitted.
            owns_pool: Close the pool manager when the executor is closed.

        Raises:
            ConfigurationError: If the connection URL is missing.
        """
        if not db_config.url:
            raise ConfigurationError(
                message="DATABASE_URL environment variable is not set",
                details={"hint": "Set DATABASE_URL to a postgres:// connection string"},
            )

        self.pool_manager = pool_manager
        self.db_config = db_config
        self.execution_config = execution_config or ExecutionConfig()
        self.backup_config = backup_config or BackupConfig()
        self.introspector = SchemaIntrospector(pool_manager)
        self.backup_orchestrator = backup_orchestrator or BackupOrchestrator(
            db_config.url, self.backup_config
        )
        self.owns_pool = owns_pool
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether ``close()`` has been called."""
        return self._closed

    async def execute_query(
        self,
        sql: str,
        use_transaction: bool = True,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """Execute SQL and return the result of its last statement.

        Args:
            sql: One statement, or several separated by semicolons.
            use_transaction: Run all statements in one transaction.
            timeout_ms: Per-statement timeout; falls back to the configured
                default.

        Returns:
            ExecutionResult: Command, row count, rows and duration. Empty
                (comment-only) SQL gives an empty result.

        Raises:
            ValidationError: If the timeout is not positive.
            DatabaseConnectionError: If no connection can be acquired.
            SQLError: If the server rejects a statement.
            ExecutionTimeoutError: If a statement exceeds the timeout.
        """
        return await self.execute(self._build_request(sql, use_transaction, timeout_ms))

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute an ExecutionRequest. See ``execute_query``."""
        self._ensure_open()
        statements = split_statements(request.sql)
        if not statements:
            return ExecutionResult()

        start = time.perf_counter()
        result = ExecutionResult()
        async with self.pool_manager.acquire() as connection:
            await self._set_statement_timeout(connection, request.timeout_ms)
            try:
                async with self._transaction_scope(connection, request.use_transaction):
                    for statement in statements:
                        result = await self._run_statement(
                            connection, statement, request.timeout_ms
                        )
            except (asyncpg.PostgresError, *_CONNECTION_LOST) as e:
                # Only COMMIT can get here; statement errors are already wrapped
                raise self._wrap_driver_error(e, "COMMIT") from e
            finally:
                await self._reset_statement_timeout(connection, request.timeout_ms)

        duration_ms = (time.perf_counter() - start) * 1000
        return result.model_copy(update={"duration_ms": duration_ms})

    async def execute_file(
        self,
        path: str | PathLike[str],
        use_transaction: bool = True,
        timeout_ms: int | None = None,
    ) -> ScriptResult:
        """Execute every statement of a SQL file.

        Args:
            path: Path of the script.
            use_transaction: Run the whole file as one transaction.
            timeout_ms: Per-statement timeout.

        Returns:
            ScriptResult: Per-statement outcomes; see ``execute_script``.

        Raises:
            ValidationError: If the file does not exist or cannot be read.
        """
        file_path = anyio.Path(path)
        if not await file_path.is_file():
            raise ValidationError(f"File not found: {path}", details={"path": str(path)})

        try:
            script = await file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(
                message=f"Cannot read SQL file {path}: {e!s}",
                details={"path": str(path)},
            ) from e

        logger.info("Executing SQL file", extra={"path": str(path)})
        return await self.execute_script(script, use_transaction, timeout_ms)

    async def execute_script(
        self,
        script: str,
        use_transaction: bool = True,
        timeout_ms: int | None = None,
    ) -> ScriptResult:
        """Execute a multi-statement script on one connection, in order.

        Execution stops at the first failing statement. In transactional
        mode everything before it is rolled back; otherwise each statement
        has already committed and stays.

        Args:
            script: Script text.
            use_transaction: Run the whole script as one transaction.
            timeout_ms: Per-statement timeout.

        Returns:
            ScriptResult: Outcomes of the executed statements. Statement
                failures are reported here rather than raised.

        Raises:
            ValidationError: If the timeout is not positive.
            DatabaseConnectionError: If no connection can be acquired.
        """
        request = self._build_request(script, use_transaction, timeout_ms)
        self._ensure_open()
        statements = split_statements(script)
        if not statements:
            return ScriptResult(success=True)

        start = time.perf_counter()
        outcomes: list[StatementOutcome] = []
        failure: SequelaeError | None = None
        failed_index: int | None = None
        rolled_back = False

        async with self.pool_manager.acquire() as connection:
            await self._set_statement_timeout(connection, request.timeout_ms)
            try:
                async with self._transaction_scope(connection, use_transaction):
                    for index, statement in enumerate(statements):
                        try:
                            result = await self._run_statement(
                                connection, statement, request.timeout_ms
                            )
                        except (SQLError, ExecutionTimeoutError) as e:
                            failure, failed_index = e, index
                            outcomes.append(
                                StatementOutcome(
                                    index=index,
                                    statement=statement,
                                    success=False,
                                    error=e.to_error_detail().to_dict(),
                                )
                            )
                            raise _ScriptAborted from e
                        outcomes.append(
                            StatementOutcome(
                                index=index, statement=statement, success=True, result=result
                            )
                        )
            except _ScriptAborted:
                rolled_back = use_transaction
            except (asyncpg.PostgresError, *_CONNECTION_LOST) as e:
                # COMMIT failed, the server discarded the transaction
                failure = self._wrap_driver_error(e, "COMMIT")
                rolled_back = True
            finally:
                await self._reset_statement_timeout(connection, request.timeout_ms)

        total_ms = (time.perf_counter() - start) * 1000
        success = failure is None
        skipped = len(statements) - len(outcomes) if failed_index is not None else 0
        metrics.increment_script("success" if success else "error", use_transaction)

        if success:
            logger.info(
                "Script executed",
                extra={"statements": len(statements), "duration_ms": total_ms},
            )
        else:
            logger.warning(
                "Script failed",
                extra={
                    "failed_index": failed_index,
                    "rolled_back": rolled_back,
                    "skipped": skipped,
                    "error": failure.message if failure else None,
                },
            )

        return ScriptResult(
            success=success,
            statement_count=len(statements),
            results=outcomes,
            failed_index=failed_index,
            rolled_back=rolled_back,
            skipped_count=skipped,
            total_duration_ms=total_ms,
            error=failure.to_error_detail().to_dict() if failure else None,
        )

    async def get_schema(
        self,
        table_names: str | Sequence[str] | None = None,
        all_schemas: bool = False,
    ) -> list[SchemaRecord]:
        """Describe tables; see ``SchemaIntrospector.get_schema``."""
        self._ensure_open()
        return await self.introspector.get_schema(table_names, all_schemas)

    async def backup(self, options: BackupOptions | None = None) -> BackupResult:
        """Create a backup with pg_dump.

        pg_dump and I/O failures are reported as an unsuccessful result.

        Args:
            options: Backup options; defaults to a full plain-text dump.

        Returns:
            BackupResult: Outcome of the run.

        Raises:
            ValidationError: If the options are contradictory.
            ConfigurationError: If pg_dump cannot be found.
        """
        self._ensure_open()
        options = options or BackupOptions()
        start = time.perf_counter()
        try:
            result = await self.backup_orchestrator.run(options)
        except BackupError as e:
            logger.error("Backup failed", extra={"error": e.message, "error_details": e.details})
            result = BackupResult(
                success=False,
                output_path=str(e.details.get("output_path") or options.output_path or ""),
                format=options.format,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=e.message,
                error_code=e.code,
            )
        record_backup_metrics(result)
        return result

    async def close(self) -> None:
        """Close the executor. Safe to call more than once.

        The pool is closed only when this executor owns it.
        """
        if self._closed:
            return
        self._closed = True
        if self.owns_pool:
            await self.pool_manager.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise DatabaseConnectionError("Executor is closed")

    def _build_request(
        self, sql: str, use_transaction: bool, timeout_ms: int | None
    ) -> ExecutionRequest:
        if timeout_ms is None:
            timeout_ms = self.execution_config.default_timeout_ms
        try:
            return ExecutionRequest(sql=sql, use_transaction=use_transaction, timeout_ms=timeout_ms)
        except PydanticValidationError as e:
            raise ValidationError(
                message=f"Invalid execution request: {e.errors()[0]['msg']}",
                details={"timeout_ms": timeout_ms},
            ) from e

    @contextlib.asynccontextmanager
    async def _transaction_scope(
        self, connection: Connection, use_transaction: bool
    ) -> AsyncIterator[None]:
        """Commit on normal exit, roll back on any exception."""
        if not use_transaction:
            yield
            return

        transaction = connection.transaction()
        await transaction.start()
        try:
            yield
        except BaseException:
            await self._rollback(connection, transaction)
            raise
        await transaction.commit()

    async def _rollback(self, connection: Connection, transaction: Any) -> None:
        try:
            await transaction.rollback()
        except (asyncpg.PostgresError, *_CONNECTION_LOST):
            # The server aborts the open transaction when the session drops.
            logger.warning("Rollback failed, terminating connection", exc_info=True)
            connection.terminate()

    async def _set_statement_timeout(self, connection: Connection, timeout_ms: int | None) -> None:
        if timeout_ms is None:
            return
        sql = f"SET statement_timeout = {int(timeout_ms)}"
        try:
            await connection.execute(sql)
        except (asyncpg.PostgresError, *_CONNECTION_LOST) as e:
            raise self._wrap_driver_error(e, sql) from e

    async def _reset_statement_timeout(
        self, connection: Connection, timeout_ms: int | None
    ) -> None:
        """Restore the session default so the timeout never reaches the next borrower."""
        if timeout_ms is None or connection.is_closed():
            return
        try:
            await connection.execute("RESET statement_timeout")
        except (asyncpg.PostgresError, *_CONNECTION_LOST):
            logger.warning(
                "Could not reset statement_timeout, terminating connection", exc_info=True
            )
            connection.terminate()

    async def _run_statement(
        self, connection: Connection, sql: str, timeout_ms: int | None
    ) -> ExecutionResult:
        start = time.perf_counter()
        try:
            records, status = await self._with_deadline(self._fetch(connection, sql), timeout_ms)
        except TimeoutError as e:
            metrics.increment_statement(None, "timeout")
            raise self._timeout_error(sql, timeout_ms) from e
        except asyncpg.QueryCanceledError as e:
            metrics.increment_statement(None, "timeout" if timeout_ms is not None else "error")
            if timeout_ms is None:
                raise self._wrap_driver_error(e, sql) from e
            raise self._timeout_error(sql, timeout_ms) from e
        except (asyncpg.PostgresError, *_CONNECTION_LOST) as e:
            metrics.increment_statement(None, "error")
            raise self._wrap_driver_error(e, sql) from e

        duration = time.perf_counter() - start
        command, row_count = parse_status(status)
        rows = serialize_rows(records)
        if row_count is None and rows:
            row_count = len(rows)

        metrics.increment_statement(command, "success")
        metrics.observe_statement_duration(duration)
        logger.debug(
            "Statement executed",
            extra={"command": command, "row_count": row_count, "duration_ms": duration * 1000},
        )
        return ExecutionResult(
            command=command,
            row_count=row_count,
            rows=rows,
            duration_ms=duration * 1000,
        )

    @staticmethod
    async def _fetch(connection: Connection, sql: str) -> tuple[list[Any], str | None]:
        # A prepared statement exposes both the rows and the status tag.
        statement = await connection.prepare(sql)
        records = await statement.fetch()
        return records, statement.get_statusmsg()

    async def _with_deadline(self, awaitable: Awaitable[T], timeout_ms: int | None) -> T:
        """Client-side backstop in case the server never honours the timeout."""
        if timeout_ms is None:
            return await awaitable
        deadline = timeout_ms / 1000 + self.execution_config.timeout_grace_seconds
        return await asyncio.wait_for(awaitable, timeout=deadline)

    def _timeout_error(self, sql: str, timeout_ms: int | None) -> ExecutionTimeoutError:
        return ExecutionTimeoutError(
            message=f"Statement exceeded timeout of {timeout_ms} ms",
            details={
                "timeout_ms": timeout_ms,
                "sql": sql[: self.execution_config.max_sql_in_error],
            },
        )

    def _wrap_driver_error(self, error: Exception, sql: str) -> SQLError:
        if isinstance(error, asyncpg.PostgresError):
            return SQLError.from_postgres(error, sql, self.execution_config.max_sql_in_error)
        return SQLError(
            message=f"Connection lost during execution: {error!s}",
            details={
                "error_type": type(error).__name__,
                "sql": sql[: self.execution_config.max_sql_in_error],
            },
        )
