"""Unit tests for schema introspection."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from sequelae_mcp.db.introspection import (
    SchemaIntrospector,
    build_schema_query,
    normalize_table_names,
    parse_schema_row,
)
from sequelae_mcp.models.errors import SQLError, ValidationError


def found_row(table: str, schema: str = "public") -> dict[str, Any]:
    """Build a 'found' row as returned by the introspection query."""
    return {
        "kind": "found",
        "table_schema": schema,
        "table_name": table,
        "columns": json.dumps(
            [
                {
                    "column_name": "id",
                    "data_type": "integer",
                    "is_nullable": False,
                    "column_default": f"nextval('{table}_id_seq'::regclass)",
                    "character_maximum_length": None,
                },
                {
                    "column_name": "email",
                    "data_type": "character varying",
                    "is_nullable": True,
                    "column_default": None,
                    "character_maximum_length": 255,
                },
            ]
        ),
        "constraints": json.dumps(
            [
                {
                    "constraint_name": f"{table}_pkey",
                    "constraint_type": "PRIMARY KEY",
                    "column_name": "id",
                },
                {
                    "constraint_name": f"{table}_email_key",
                    "constraint_type": "UNIQUE",
                    "column_name": "email",
                },
            ]
        ),
        "suggestions": None,
    }


def missing_row(table: str, suggestions: list[str]) -> dict[str, Any]:
    return {
        "kind": "missing",
        "table_schema": None,
        "table_name": table,
        "columns": None,
        "constraints": None,
        "suggestions": suggestions,
    }


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection with a read-only transaction."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])

    transaction_mock = MagicMock()
    transaction_mock.__aenter__ = AsyncMock(return_value=None)
    transaction_mock.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=transaction_mock)
    return conn


@pytest.fixture
def introspector(mock_connection: MagicMock) -> SchemaIntrospector:
    """Create an introspector over a mocked pool manager."""
    manager = MagicMock()
    acquire_mock = MagicMock()
    acquire_mock.__aenter__ = AsyncMock(return_value=mock_connection)
    acquire_mock.__aexit__ = AsyncMock(return_value=None)
    manager.acquire = MagicMock(return_value=acquire_mock)
    return SchemaIntrospector(manager)


class TestNormalizeTableNames:
    """Tests for table name normalization."""

    def test_none_means_all_tables(self) -> None:
        assert normalize_table_names(None) is None

    def test_comma_separated_string(self) -> None:
        assert normalize_table_names(" users, orders ,,users") == ["users", "orders"]

    def test_list_is_deduplicated(self) -> None:
        assert normalize_table_names(["b", "a", "b"]) == ["b", "a"]

    @pytest.mark.parametrize("names", ["", " , ", []])
    def test_empty_request(self, names: Any) -> None:
        with pytest.raises(ValidationError, match="No table names"):
            normalize_table_names(names)

    @pytest.mark.parametrize(
        "name",
        ["users; DROP TABLE x", "1abc", "a-b", "x" * 64, "public.users", "'q'"],
    )
    def test_invalid_identifier(self, name: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize_table_names([name])

        assert exc_info.value.details["invalid_names"] == [name]

    def test_valid_identifiers(self) -> None:
        names = ["_tmp", "Users2", "a$b", "x" * 63]
        assert normalize_table_names(names) == names


class TestBuildSchemaQuery:
    """Tests for query construction."""

    def test_user_schemas_by_default(self) -> None:
        query = build_schema_query()

        assert "NOT IN ('pg_catalog', 'information_schema')" in query
        assert "t.table_schema" in query
        assert "tc.table_schema NOT IN" in query
        assert "$1::text[]" in query

    def test_all_schemas_has_no_filter(self) -> None:
        query = build_schema_query(all_schemas=True)

        assert "pg_catalog" not in query
        assert "AND TRUE" in query

    def test_suggestions_limited_to_three(self) -> None:
        assert "LIMIT 3" in build_schema_query()


class TestParseSchemaRow:
    """Tests for row parsing."""

    def test_found_row(self) -> None:
        record = parse_schema_row(found_row("users"))

        assert record.kind == "found"
        assert record.qualified_name == "public.users"
        assert [c.column_name for c in record.columns] == ["id", "email"]
        assert record.columns[0].is_nullable is False
        assert record.columns[1].describe() == "email: character varying(255) (nullable)"
        assert record.constraints_by_type() == {"PRIMARY KEY": ["id"], "UNIQUE": ["email"]}

    def test_missing_row(self) -> None:
        record = parse_schema_row(missing_row("usrs", ["users"]))

        assert record.kind == "missing"
        assert record.table_schema is None
        assert record.suggestions == ["users"]
        assert record.suggestion_text == "users"

    def test_missing_row_without_suggestions(self) -> None:
        record = parse_schema_row(missing_row("zzz", []))

        assert record.suggestions == []


class TestSchemaIntrospector:
    """Tests for SchemaIntrospector.get_schema()."""

    @pytest.mark.asyncio
    async def test_get_schema_passes_names_as_parameter(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.return_value = [
            found_row("users"),
            missing_row("usrs", ["users", "user_roles"]),
        ]

        records = await introspector.get_schema("users,usrs")

        query, names = mock_connection.fetch.call_args.args
        assert names == ["users", "usrs"]
        assert "usrs" not in query
        mock_connection.transaction.assert_called_once_with(readonly=True)
        assert [r.kind for r in records] == ["found", "missing"]
        assert records[1].suggestions == ["users", "user_roles"]

    @pytest.mark.asyncio
    async def test_get_schema_all_tables(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.return_value = [found_row("orders"), found_row("users")]

        records = await introspector.get_schema()

        assert mock_connection.fetch.call_args.args[1] is None
        assert [r.table_name for r in records] == ["orders", "users"]

    @pytest.mark.asyncio
    async def test_invalid_name_never_reaches_database(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        with pytest.raises(ValidationError):
            await introspector.get_schema(["users; DROP TABLE users"])

        mock_connection.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_failure_raises_sql_error(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.side_effect = asyncpg.InsufficientPrivilegeError(
            "permission denied for schema secret"
        )

        with pytest.raises(SQLError) as exc_info:
            await introspector.get_schema()

        assert exc_info.value.details["sqlstate"] == "42501"
