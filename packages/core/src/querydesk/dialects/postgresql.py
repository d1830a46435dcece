"""PostgreSQL adapter."""

import logging

from sqlalchemy import Connection, text
from sqlalchemy.exc import SQLAlchemyError

from querydesk.dialects.sql import SQLAlchemyAdapter

logger = logging.getLogger(__name__)

# SQLSTATE query_canceled, raised for statement_timeout and pg_cancel_backend
QUERY_CANCELED = "57014"


class PostgreSQLAdapter(SQLAlchemyAdapter):
    """PostgreSQL through psycopg2.

    Timeouts use ``SET LOCAL statement_timeout`` so the limit ends with the
    transaction and never leaks into the pool. Caller cancellation sends a
    cancel request for the running statement.
    """

    dialect = "postgresql"
    default_schema = "public"
    native_timeout = True

    def apply_timeout(self, conn: Connection, timeout: float | None) -> None:
        if timeout is None:
            return
        conn.execute(text(f"SET LOCAL statement_timeout = {max(int(timeout * 1000), 1)}"))

    def interrupt(self, conn: Connection) -> None:
        conn.connection.dbapi_connection.cancel()

    def is_cancellation(self, error: SQLAlchemyError) -> bool:
        return getattr(getattr(error, "orig", None), "pgcode", None) == QUERY_CANCELED
