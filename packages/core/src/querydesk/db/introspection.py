"""Database schema introspection."""

import logging
from typing import Any

from sqlalchemy import Engine, inspect, text
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from querydesk.errors import BackendError
from querydesk_models import ColumnMeta, ForeignKeyRef, TableMeta

logger = logging.getLogger(__name__)


def _type_name(engine: Engine, column_type: Any) -> str:
    try:
        return str(column_type.compile(dialect=engine.dialect))
    except Exception:
        # Some reflected types have no compiler for this dialect
        return type(column_type).__name__.upper()


def get_tables(inspector: Inspector, schema: str | None = None) -> list[dict[str, str]]:
    """List tables and views in a schema.

    Args:
        inspector: SQLAlchemy inspector bound to the engine
        schema: Schema name. If None, uses the connection's default schema.

    Returns:
        List of dicts with 'name' and 'type' ('BASE TABLE' or 'VIEW') keys
    """
    tables = [{"name": name, "type": "BASE TABLE"} for name in inspector.get_table_names(schema=schema)]

    # Also get views
    try:
        tables.extend(
            {"name": name, "type": "VIEW"} for name in inspector.get_view_names(schema=schema)
        )
    except NotImplementedError:
        logger.debug("View introspection not supported by %s", inspector.dialect.name)

    return sorted(tables, key=lambda t: t["name"])


def get_columns(
    engine: Engine,
    inspector: Inspector,
    table_name: str,
    schema: str | None = None,
    primary_keys: tuple[str, ...] = (),
) -> list[ColumnMeta]:
    """Get column information for a table.

    Args:
        engine: Engine used to render dialect-specific type names
        inspector: SQLAlchemy inspector bound to the engine
        table_name: Name of the table
        schema: Schema name. If None, uses default schema.
        primary_keys: Primary key column names, used to flag columns

    Returns:
        Columns in ordinal order
    """
    columns = []
    for col in inspector.get_columns(table_name, schema=schema):
        columns.append(
            ColumnMeta(
                name=col["name"],
                data_type=_type_name(engine, col["type"]),
                is_nullable=bool(col.get("nullable", True)),
                is_primary_key=col["name"] in primary_keys,
            )
        )
    return columns


def get_primary_keys(inspector: Inspector, table_name: str, schema: str | None = None) -> list[str]:
    """Get primary key columns for a table."""
    pk = inspector.get_pk_constraint(table_name, schema=schema)
    return list(pk.get("constrained_columns") or [])


def get_foreign_keys(
    inspector: Inspector, table_name: str, schema: str | None = None
) -> list[ForeignKeyRef]:
    """Get foreign key constraints for a table, one entry per constrained column."""
    refs = []
    for fk in inspector.get_foreign_keys(table_name, schema=schema):
        constrained = fk.get("constrained_columns") or []
        referred = fk.get("referred_columns") or []
        for column_name, referenced_column in zip(constrained, referred):
            refs.append(
                ForeignKeyRef(
                    column_name=column_name,
                    referenced_table=fk.get("referred_table", ""),
                    referenced_column=referenced_column,
                    constraint_name=fk.get("name"),
                )
            )
    return refs


def get_table_comment(inspector: Inspector, table_name: str, schema: str | None = None) -> str | None:
    """Get the table comment, or None where the backend has no comments."""
    try:
        return inspector.get_table_comment(table_name, schema=schema).get("text")
    except NotImplementedError:
        return None


def introspect_schema(
    engine: Engine, schema: str | None = None, catalog: str | None = None
) -> list[TableMeta]:
    """Introspect every table and view in a schema.

    Args:
        engine: Engine to introspect
        schema: Schema name. If None, uses the connection's default schema.
        catalog: Catalog name recorded on each table

    Returns:
        Tables sorted by name

    Raises:
        BackendError: If the backend can't be reached or refuses introspection
    """
    try:
        inspector = inspect(engine)
        tables = []
        for entry in get_tables(inspector, schema=schema):
            name = entry["name"]
            primary_keys = tuple(get_primary_keys(inspector, name, schema=schema))
            tables.append(
                TableMeta(
                    catalog_name=catalog,
                    schema_name=schema,
                    name=name,
                    type=entry["type"],
                    comment=get_table_comment(inspector, name, schema=schema),
                    columns=tuple(get_columns(engine, inspector, name, schema, primary_keys)),
                    primary_keys=primary_keys,
                    foreign_keys=tuple(get_foreign_keys(inspector, name, schema=schema)),
                )
            )
        logger.info("Introspected %d tables (schema=%s)", len(tables), schema)
        return tables
    except SQLAlchemyError as e:
        raise BackendError(f"Failed to introspect schema: {e}") from e


def get_table_sample(
    engine: Engine,
    table_name: str,
    schema: str | None = None,
    limit: int = 5,
) -> list[dict[str, Any]]:
    """Get sample rows from a table.

    Args:
        engine: Engine to query
        table_name: Name of the table
        schema: Schema name. If None, uses default schema.
        limit: Maximum number of rows to return

    Returns:
        List of row dicts
    """
    preparer = engine.dialect.identifier_preparer
    full_name = preparer.quote(table_name)
    if schema:
        full_name = f"{preparer.quote_schema(schema)}.{full_name}"

    query = text(f"SELECT * FROM {full_name} LIMIT :limit")

    try:
        with engine.connect() as conn:
            result = conn.execute(query, {"limit": limit})
            columns = list(result.keys())
            return [dict(zip(columns, row)) for row in result]
    except SQLAlchemyError as e:
        raise BackendError(f"Failed to get sample from {table_name}: {e}") from e
