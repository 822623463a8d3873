"""Unit tests for the MCP tool functions."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

import sequelae_mcp.server as server_module
from sequelae_mcp.models.errors import ConfigurationError, ErrorCode, SQLError
from sequelae_mcp.models.results import (
    BackupFormat,
    BackupResult,
    ExecutionResult,
    ScriptResult,
)
from sequelae_mcp.models.schema import SchemaRecord
from sequelae_mcp.server import lifespan, mcp, sql_backup, sql_exec, sql_file, sql_schema


@pytest.fixture
def mock_executor(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Install a mocked executor as if the lifespan had run."""
    executor = MagicMock()
    executor.execute_query = AsyncMock()
    executor.execute_file = AsyncMock()
    executor.get_schema = AsyncMock()
    executor.backup = AsyncMock()
    monkeypatch.setattr(server_module, "_executor", executor)
    return executor


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers after the lifespan configures logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestTools:
    """Tests for tool responses."""

    @pytest.mark.asyncio
    async def test_tool_before_initialization(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(server_module, "_executor", None)

        result = await sql_exec(sql="SELECT 1")

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.DATABASE_CONNECTION_ERROR

    @pytest.mark.asyncio
    async def test_sql_exec_success(self, mock_executor: MagicMock) -> None:
        mock_executor.execute_query.return_value = ExecutionResult(
            command="SELECT", row_count=1, rows=[{"n": 1}], duration_ms=1.5
        )

        result = await sql_exec(sql="SELECT 1 AS n", timeout_ms=1000)

        assert result == {
            "success": True,
            "command": "SELECT",
            "row_count": 1,
            "rows": [{"n": 1}],
            "duration_ms": 1.5,
        }
        mock_executor.execute_query.assert_awaited_once_with("SELECT 1 AS n", True, 1000)

    @pytest.mark.asyncio
    async def test_sql_exec_sql_error(self, mock_executor: MagicMock) -> None:
        mock_executor.execute_query.side_effect = SQLError(
            'syntax error at or near "SELEC"', position=1
        )

        result = await sql_exec(sql="SELEC 1")

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.SQL_ERROR
        assert result["error"]["details"]["position"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, mock_executor: MagicMock) -> None:
        mock_executor.execute_query.side_effect = RuntimeError("kaboom")

        result = await sql_exec(sql="SELECT 1")

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.INTERNAL_ERROR
        assert result["error"]["details"]["error_type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_sql_file(self, mock_executor: MagicMock) -> None:
        mock_executor.execute_file.return_value = ScriptResult(
            success=False, statement_count=3, failed_index=2, rolled_back=True
        )

        result = await sql_file(path="migrate.sql", use_transaction=True)

        assert result["success"] is False
        assert result["failed_index"] == 2
        assert result["rolled_back"] is True

    @pytest.mark.asyncio
    async def test_sql_schema_splits_found_and_missing(self, mock_executor: MagicMock) -> None:
        mock_executor.get_schema.return_value = [
            SchemaRecord(kind="found", table_schema="public", table_name="users"),
            SchemaRecord(kind="missing", table_name="usrs", suggestions=["users"]),
        ]

        result = await sql_schema(tables=["users", "usrs"])

        assert result["success"] is True
        assert [t["table_name"] for t in result["tables"]] == ["users"]
        assert result["missing"] == [{"table_name": "usrs", "suggestions": ["users"]}]

    @pytest.mark.asyncio
    async def test_sql_backup(self, mock_executor: MagicMock) -> None:
        mock_executor.backup.return_value = BackupResult(
            success=True, output_path="/tmp/x.dump", format=BackupFormat.CUSTOM, size_bytes=9
        )

        result = await sql_backup(format="custom", tables=["users"])

        options = mock_executor.backup.call_args.args[0]
        assert options.format == BackupFormat.CUSTOM
        assert options.tables == ["users"]
        assert result["success"] is True
        assert result["format"] == "custom"

    @pytest.mark.asyncio
    async def test_sql_backup_invalid_options(self, mock_executor: MagicMock) -> None:
        result = await sql_backup(data_only=True, schema_only=True)

        assert result["success"] is False
        assert result["error"]["code"] == ErrorCode.VALIDATION_FAILED
        mock_executor.backup.assert_not_called()


class TestLifespan:
    """Tests for server startup and shutdown."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("restore_root_logger")
    async def test_lifespan_builds_and_clears_executor(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://app:pw@localhost:5432/appdb")

        async with lifespan(mcp):
            executor = server_module._executor
            assert executor is not None
            assert executor.owns_pool is True

        assert server_module._executor is None
        assert executor.closed is True

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("restore_root_logger")
    async def test_lifespan_requires_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "")

        with pytest.raises(ConfigurationError):
            async with lifespan(mcp):
                pass
