"""SQLite adapter."""

from typing import Any

from sqlalchemy import Connection, Engine

from querydesk.dialects.sql import SQLAlchemyAdapter


class SQLiteAdapter(SQLAlchemyAdapter):
    """SQLite through the standard library driver.

    SQLite has no server-side timeout, so both timeouts and cancellation go
    through ``sqlite3.Connection.interrupt()`` from the watchdog thread.
    """

    dialect = "sqlite"
    engine_defaults: dict[str, Any] = {
        # Statements run on the caller's thread while the watchdog interrupts
        "connect_args": {"check_same_thread": False},
    }

    def catalog_name(self, engine: Engine) -> str | None:
        return "main"

    def interrupt(self, conn: Connection) -> None:
        conn.connection.dbapi_connection.interrupt()
