"""Schema metadata models.

Everything here is frozen: a published SchemaSnapshot is shared by every
reader and must never change underneath them.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Sampled values kept per column for completion
MAX_COLUMN_VALUES = 20


class ColumnMeta(BaseModel):
    """A single column of a table."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Column name as stored in the database")
    data_type: str = Field(default="", description="Backend data type name")
    is_nullable: bool = Field(default=True, description="Whether NULL is allowed")
    is_primary_key: bool = Field(default=False, description="Part of the primary key")


class ForeignKeyRef(BaseModel):
    """A foreign key column and the column it references."""

    model_config = ConfigDict(frozen=True)

    column_name: str = Field(..., description="Constrained column")
    referenced_table: str = Field(..., description="Referenced table name")
    referenced_column: str = Field(..., description="Referenced column name")
    constraint_name: str | None = Field(default=None, description="Constraint name if named")


class TableMeta(BaseModel):
    """Introspected structure of a table or view."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    catalog_name: str | None = Field(default=None, description="Catalog/database", alias="catalog")
    schema_name: str | None = Field(default=None, description="Schema name", alias="schema")
    name: str = Field(..., description="Table name (without schema)")
    type: str = Field(default="BASE TABLE", description="BASE TABLE or VIEW")
    comment: str | None = Field(default=None, description="Table comment")
    columns: tuple[ColumnMeta, ...] = Field(default=(), description="Columns in ordinal order")
    primary_keys: tuple[str, ...] = Field(default=(), description="Primary key column names")
    foreign_keys: tuple[ForeignKeyRef, ...] = Field(default=(), description="Foreign keys")

    @model_validator(mode="after")
    def _unique_column_names(self) -> "TableMeta":
        seen: set[str] = set()
        for column in self.columns:
            if column.name in seen:
                raise ValueError(f"Duplicate column '{column.name}' in table '{self.name}'")
            seen.add(column.name)
        return self

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnMeta | None:
        """Look up a column, exact match first, then case-insensitive."""
        for column in self.columns:
            if column.name == name:
                return column
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None


class TableWithSample(TableMeta):
    """TableMeta plus a handful of sample rows for the schema browser."""

    values: tuple[dict[str, Any], ...] = Field(default=(), description="Sample rows")


class SchemaVersion(BaseModel):
    """Cheap header describing the current snapshot."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    version: int
    last_modified: datetime
    table_count: int


class SchemaSnapshot(BaseModel):
    """A versioned, immutable picture of the database structure."""

    model_config = ConfigDict(frozen=True)

    version: int = Field(..., ge=1, description="Increases on every re-introspection")
    last_modified: datetime = Field(..., description="When the snapshot was built")
    table_count: int = Field(..., ge=0, description="Number of tables in the snapshot")
    tables: tuple[TableMeta, ...] = Field(default=(), description="Tables in name order")
    column_values: dict[str, tuple[str | int | float | bool, ...]] = Field(
        default_factory=dict,
        description="Distinct sampled values keyed by lower-cased 'table.column'",
    )

    @model_validator(mode="after")
    def _table_count_matches(self) -> "SchemaSnapshot":
        if self.table_count != len(self.tables):
            raise ValueError(
                f"table_count={self.table_count} does not match {len(self.tables)} tables"
            )
        return self

    @property
    def header(self) -> SchemaVersion:
        return SchemaVersion(
            version=self.version,
            last_modified=self.last_modified,
            table_count=self.table_count,
        )

    def table(self, name: str) -> TableMeta | None:
        """Find a table by name, preferring an exact match over a case-insensitive one."""
        for table in self.tables:
            if table.name == name:
                return table
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered:
                return table
        return None

    def values_for(self, table_name: str, column_name: str) -> tuple[str | int | float | bool, ...]:
        """Distinct values seen in sample rows of a column, if any were recorded."""
        return self.column_values.get(f"{table_name}.{column_name}".lower(), ())

    def with_sample_rows(self, table_name: str, rows: list[dict[str, Any]]) -> "SchemaSnapshot":
        """Copy of this snapshot that also knows the distinct values in ``rows``."""
        table = self.table(table_name)
        if table is None or not rows:
            return self
        values = dict(self.column_values)
        for column in table.columns:
            distinct: dict[tuple[type, Any], str | int | float | bool] = {}
            for row in rows:
                value = row.get(column.name)
                if isinstance(value, (str, int, float, bool)):
                    distinct.setdefault((type(value), value), value)
            if distinct:
                key = f"{table.name}.{column.name}".lower()
                values[key] = tuple(distinct.values())[:MAX_COLUMN_VALUES]
        return self.model_copy(update={"column_values": values})
