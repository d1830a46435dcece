"""Dialect adapters.

An adapter owns the backend connection and is the only place where
driver-specific behavior lives: introspection, statement execution,
timeouts and interruption.
"""

import logging
import threading
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import Engine

from querydesk.config import Settings, get_settings
from querydesk.db.connection import detect_dialect_from_url
from querydesk.dialects.mysql import MySQLAdapter
from querydesk.dialects.postgresql import PostgreSQLAdapter
from querydesk.dialects.sql import SQLAdapterConfig, SQLAlchemyAdapter, StatementResult
from querydesk.dialects.sqlite import SQLiteAdapter
from querydesk_models import TableMeta

logger = logging.getLogger(__name__)


@runtime_checkable
class DialectAdapter(Protocol):
    """Protocol that every dialect adapter implements."""

    dialect: str

    def connect(self) -> Engine:
        """Open (or reuse) the backend connection."""
        ...

    def introspect(self) -> list[TableMeta]:
        """Read tables, columns and keys from the backend."""
        ...

    def execute_statement(
        self,
        sql: str,
        parameters: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StatementResult:
        """Run one statement with bound parameters."""
        ...

    def test_connection(self) -> dict[str, Any]:
        """Test database connectivity."""
        ...

    def get_table_sample(
        self, table_name: str, schema: str | None = None, limit: int = 5
    ) -> list[dict[str, Any]]:
        """Get sample rows from a table."""
        ...

    def dispose(self) -> None:
        """Release pooled connections."""
        ...


_ADAPTER_CLASSES: dict[str, type[SQLAlchemyAdapter]] = {
    "postgresql": PostgreSQLAdapter,
    "mysql": MySQLAdapter,
    "sqlite": SQLiteAdapter,
}

_DIALECT_ALIASES = {"postgres": "postgresql", "mariadb": "mysql"}


def resolve_dialect(database_url: str, dialect: str | None = None) -> str:
    """Resolve the dialect name from an explicit setting, else from the URL."""
    name = (dialect or detect_dialect_from_url(database_url)).lower()
    return _DIALECT_ALIASES.get(name, name)


def create_adapter(
    database_url: str,
    dialect: str | None = None,
    schema: str | None = None,
    engine_kwargs: dict[str, Any] | None = None,
) -> SQLAlchemyAdapter:
    """Create the adapter for a database URL.

    Unknown dialects fall back to the generic SQLAlchemy adapter.
    """
    name = resolve_dialect(database_url, dialect)
    adapter_cls = _ADAPTER_CLASSES.get(name, SQLAlchemyAdapter)
    logger.info("Using %s adapter for dialect '%s'", adapter_cls.__name__, name)
    return adapter_cls(
        SQLAdapterConfig(
            database_url=database_url,
            schema=schema,
            engine_kwargs=engine_kwargs or {},
        )
    )


def get_adapter(settings: Settings | None = None) -> SQLAlchemyAdapter:
    """Create the adapter selected by configuration."""
    settings = settings or get_settings()
    return create_adapter(settings.database_url, dialect=settings.db_dialect or None)


__all__ = [
    "DialectAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "SQLAdapterConfig",
    "SQLAlchemyAdapter",
    "SQLiteAdapter",
    "StatementResult",
    "create_adapter",
    "get_adapter",
    "resolve_dialect",
]
