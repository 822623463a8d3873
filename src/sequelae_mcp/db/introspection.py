"""PostgreSQL schema introspection.

This module builds read-only catalog queries describing tables, their columns
and constraints. When specific tables are requested, names that do not exist
come back as "missing" records with up to three similar existing names. The
suggestion ranking runs inside the same query.
"""

import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import asyncpg

from sequelae_mcp.db.pool import PoolManager
from sequelae_mcp.models.errors import SQLError, ValidationError
from sequelae_mcp.models.schema import ColumnInfo, ConstraintInfo, SchemaRecord
from sequelae_mcp.observability.metrics import metrics

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]{0,62}$")

# Only these two fragments are ever interpolated into the query.
_SCHEMA_FILTERS = {
    False: (
        "{alias}.table_schema NOT IN ('pg_catalog', 'information_schema')"
        " AND {alias}.table_schema NOT LIKE 'pg\\_toast%'"
        " AND {alias}.table_schema NOT LIKE 'pg\\_temp\\_%'"
    ),
    True: "TRUE",
}

_SCHEMA_QUERY = """
    WITH requested_tables AS (
        SELECT DISTINCT unnest($1::text[]) AS table_name
    ),
    existing_tables AS (
        SELECT t.table_schema::text AS table_schema, t.table_name::text AS table_name
        FROM information_schema.tables t
        WHERE t.table_type = 'BASE TABLE'
          AND {tables_filter}
    ),
    existing_names AS (
        SELECT DISTINCT table_name FROM existing_tables
    ),
    table_info AS (
        SELECT
            t.table_schema,
            t.table_name,
            json_agg(
                json_build_object(
                    'column_name', c.column_name,
                    'data_type', c.data_type,
                    'is_nullable', c.is_nullable = 'YES',
                    'column_default', c.column_default,
                    'character_maximum_length', c.character_maximum_length
                ) ORDER BY c.ordinal_position
            )::text AS columns
        FROM existing_tables t
        JOIN information_schema.columns c
            ON t.table_schema = c.table_schema
            AND t.table_name = c.table_name
        WHERE $1::text[] IS NULL OR t.table_name = ANY($1::text[])
        GROUP BY t.table_schema, t.table_name
    ),
    constraint_info AS (
        SELECT
            tc.table_schema,
            tc.table_name,
            json_agg(
                json_build_object(
                    'constraint_name', tc.constraint_name,
                    'constraint_type', tc.constraint_type,
                    'column_name', kcu.column_name
                ) ORDER BY tc.constraint_type, tc.constraint_name, kcu.ordinal_position
            )::text AS constraints
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
            ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
            AND tc.table_name = kcu.table_name
        WHERE {constraints_filter}
          AND ($1::text[] IS NULL OR tc.table_name = ANY($1::text[]))
        GROUP BY tc.table_schema, tc.table_name
    )
    SELECT
        'found' AS kind,
        ti.table_schema,
        ti.table_name,
        ti.columns,
        COALESCE(ci.constraints, '[]') AS constraints,
        NULL::text[] AS suggestions
    FROM table_info ti
    LEFT JOIN constraint_info ci
        ON ti.table_schema = ci.table_schema
        AND ti.table_name = ci.table_name
    UNION ALL
    SELECT
        'missing' AS kind,
        NULL AS table_schema,
        rt.table_name,
        NULL AS columns,
        NULL AS constraints,
        ARRAY(
            SELECT en.table_name
            FROM existing_names en
            WHERE strpos(lower(en.table_name), lower(left(rt.table_name, 3))) > 0
               OR strpos(lower(en.table_name), lower(left(rt.table_name, 2))) = 1
            ORDER BY
                CASE
                    WHEN strpos(lower(en.table_name), lower(left(rt.table_name, 3))) = 1 THEN 0
                    WHEN strpos(lower(en.table_name), lower(left(rt.table_name, 3))) > 0 THEN 1
                    ELSE 2
                END,
                length(en.table_name),
                en.table_name
            LIMIT 3
        ) AS suggestions
    FROM requested_tables rt
    WHERE NOT EXISTS (
        SELECT 1 FROM existing_tables et WHERE et.table_name = rt.table_name
    )
    ORDER BY kind, table_schema, table_name
"""


def normalize_table_names(table_names: str | Iterable[str] | None) -> list[str] | None:
    """Normalize and validate requested table names.

    Accepts a list or a comma separated string. Blank entries are dropped and
    duplicates removed while keeping the first occurrence order.

    Args:
        table_names: Requested names, or None for all tables.

    Returns:
        list[str] | None: Validated names, or None when no names were given.

    Raises:
        ValidationError: If a name is not a plain SQL identifier, or a
            non-empty request contains no names at all.
    """
    if table_names is None:
        return None

    raw = table_names.split(",") if isinstance(table_names, str) else list(table_names)
    names: list[str] = []
    for name in raw:
        name = name.strip()
        if name and name not in names:
            names.append(name)

    if not names:
        raise ValidationError("No table names provided")

    invalid = [name for name in names if not IDENTIFIER_PATTERN.match(name)]
    if invalid:
        raise ValidationError(
            message=f"Invalid table name(s): {', '.join(invalid)}",
            details={"invalid_names": invalid, "pattern": IDENTIFIER_PATTERN.pattern},
        )
    return names


def build_schema_query(all_schemas: bool = False) -> str:
    """Build the introspection query for the requested schema scope.

    Args:
        all_schemas: Include system schemas instead of user schemas only.

    Returns:
        str: SQL taking the requested names as ``$1`` (``text[]`` or NULL).
    """
    schema_filter = _SCHEMA_FILTERS[bool(all_schemas)]
    return _SCHEMA_QUERY.format(
        tables_filter=schema_filter.format(alias="t"),
        constraints_filter=schema_filter.format(alias="tc"),
    )


def parse_schema_row(row: Mapping[str, Any]) -> SchemaRecord:
    """Convert one result row into a SchemaRecord.

    Args:
        row: Row with kind, table_schema, table_name, columns, constraints
            and suggestions.

    Returns:
        SchemaRecord: Parsed record.
    """
    if row["kind"] == "missing":
        return SchemaRecord(
            kind="missing",
            table_name=row["table_name"],
            suggestions=list(row["suggestions"] or []),
        )

    columns = json.loads(row["columns"] or "[]")
    constraints = json.loads(row["constraints"] or "[]")
    return SchemaRecord(
        kind="found",
        table_schema=row["table_schema"],
        table_name=row["table_name"],
        columns=[ColumnInfo(**column) for column in columns],
        constraints=[ConstraintInfo(**constraint) for constraint in constraints],
    )


class SchemaIntrospector:
    """PostgreSQL schema introspection service.

    Attributes:
        pool_manager: Pool manager used to borrow connections.
    """

    def __init__(self, pool_manager: PoolManager) -> None:
        """Initialize schema introspector.

        Args:
            pool_manager: Pool manager providing connections.
        """
        self.pool_manager = pool_manager

    async def get_schema(
        self,
        table_names: str | Sequence[str] | None = None,
        all_schemas: bool = False,
    ) -> list[SchemaRecord]:
        """Describe tables, reporting requested tables that do not exist.

        Args:
            table_names: Tables to describe (list or comma separated string);
                None describes every table in scope.
            all_schemas: Include system schemas.

        Returns:
            list[SchemaRecord]: Found records first, then missing records.

        Raises:
            ValidationError: If a requested name is not a valid identifier.
            DatabaseConnectionError: If no connection can be acquired.
            SQLError: If the catalog query fails.

        Example:
            >>> records = await introspector.get_schema(["usrs"])
            >>> records[0].kind, records[0].suggestions
            ('missing', ['users'])
        """
        names = normalize_table_names(table_names)
        query = build_schema_query(all_schemas)

        async with self.pool_manager.acquire() as connection:
            try:
                async with connection.transaction(readonly=True):
                    rows = await connection.fetch(query, names)
            except asyncpg.PostgresError as e:
                raise SQLError.from_postgres(e, query) from e

        records = [parse_schema_row(row) for row in rows]
        missing = sum(1 for record in records if record.kind == "missing")
        metrics.increment_missing_tables(missing)
        logger.info(
            "Schema introspected",
            extra={"found": len(records) - missing, "missing": missing, "all_schemas": all_schemas},
        )
        return records
