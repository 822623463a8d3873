"""Database schema models for PostgreSQL introspection.

This module defines the records returned by schema introspection: tables that
were found (with their columns and constraints) and requested tables that do
not exist (with suggested alternatives).
"""

from typing import Literal

from pydantic import BaseModel, Field


class ColumnInfo(BaseModel):
    """Information about a table column."""

    column_name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="PostgreSQL data type")
    is_nullable: bool = Field(default=True, description="Whether column allows NULL values")
    column_default: str | None = Field(None, description="Default value expression")
    character_maximum_length: int | None = Field(
        None, description="Declared length for character types"
    )

    def describe(self) -> str:
        """Format the column as a one-line description.

        Returns:
            str: e.g. ``email: character varying(255) (nullable)``.
        """
        data_type = self.data_type
        if self.character_maximum_length:
            data_type = f"{data_type}({self.character_maximum_length})"
        line = f"{self.column_name}: {data_type}"
        if self.is_nullable:
            line += " (nullable)"
        if self.column_default:
            line += f" DEFAULT {self.column_default}"
        return line


class ConstraintInfo(BaseModel):
    """Information about a constraint covering one column."""

    constraint_name: str = Field(..., description="Constraint name")
    constraint_type: str = Field(..., description="PRIMARY KEY, FOREIGN KEY, UNIQUE, ...")
    column_name: str = Field(..., description="Constrained column")


class SchemaRecord(BaseModel):
    """One row of an introspection result.

    ``kind == "found"`` rows describe an existing table; ``kind == "missing"``
    rows name a requested table that does not exist, with up to three
    similar existing table names.
    """

    kind: Literal["found", "missing"] = Field(..., description="Record kind")
    table_schema: str | None = Field(None, description="Schema of a found table")
    table_name: str = Field(..., description="Table name, or the requested name if missing")
    columns: list[ColumnInfo] = Field(default_factory=list, description="Columns in order")
    constraints: list[ConstraintInfo] = Field(default_factory=list, description="Constraints")
    suggestions: list[str] = Field(
        default_factory=list, max_length=3, description="Similar existing table names"
    )

    @property
    def qualified_name(self) -> str:
        """Schema-qualified table name for found tables."""
        if self.table_schema:
            return f"{self.table_schema}.{self.table_name}"
        return self.table_name

    @property
    def suggestion_text(self) -> str:
        """Suggestions joined as a comma separated string."""
        return ", ".join(self.suggestions)

    def constraints_by_type(self) -> dict[str, list[str]]:
        """Group constrained columns by constraint type.

        Returns:
            dict: Constraint type mapped to column names, in input order.
        """
        grouped: dict[str, list[str]] = {}
        for constraint in self.constraints:
            grouped.setdefault(constraint.constraint_type, []).append(constraint.column_name)
        return grouped
