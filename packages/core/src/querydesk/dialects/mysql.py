"""MySQL / MariaDB adapter."""

import logging

from sqlalchemy import Connection, text
from sqlalchemy.exc import SQLAlchemyError

from querydesk.dialects.sql import SQLAlchemyAdapter
from querydesk.sqltext import split_statements

logger = logging.getLogger(__name__)

# ER_QUERY_INTERRUPTED, ER_QUERY_TIMEOUT and MariaDB's ER_STATEMENT_TIMEOUT
INTERRUPTED_CODES = (1317, 3024, 1969)


def _is_mariadb(conn: Connection) -> bool:
    return bool(getattr(conn.dialect, "is_mariadb", False))


class MySQLAdapter(SQLAlchemyAdapter):
    """MySQL and MariaDB through PyMySQL.

    MySQL's ``MAX_EXECUTION_TIME`` only bounds read-only SELECT, so every
    other statement is timed by the watchdog. MariaDB's
    ``max_statement_time`` covers all statements. A running statement can
    only be stopped with ``KILL QUERY`` issued from a second connection.
    """

    dialect = "mysql"
    native_timeout = True

    def server_enforces_timeout(self, conn: Connection, sql: str) -> bool:
        if _is_mariadb(conn):
            return True
        statements = split_statements(sql)
        return bool(statements) and all(
            s.split(maxsplit=1)[0].upper() == "SELECT" and " INTO " not in f" {s.upper()} "
            for s in statements
        )

    def _timeout_variable(self, conn: Connection) -> str:
        return "max_statement_time" if _is_mariadb(conn) else "MAX_EXECUTION_TIME"

    def apply_timeout(self, conn: Connection, timeout: float | None) -> None:
        if timeout is None:
            return
        if _is_mariadb(conn):
            # Seconds, fractional allowed
            value = f"{max(timeout, 0.001):g}"
        else:
            value = str(max(int(timeout * 1000), 1))
        conn.execute(text(f"SET SESSION {self._timeout_variable(conn)} = {value}"))

    def reset_timeout(self, conn: Connection, timeout: float | None) -> None:
        if timeout is None or conn.closed or conn.invalidated:
            return
        variable = self._timeout_variable(conn)
        try:
            conn.execute(text(f"SET SESSION {variable} = 0"))
        except SQLAlchemyError as e:
            # The pooled connection keeps the limit; drop it instead
            logger.warning("Could not reset %s: %s", variable, e)
            conn.invalidate()

    def interrupt(self, conn: Connection) -> None:
        thread_id = int(conn.connection.dbapi_connection.thread_id())
        with self.connect().connect() as killer:
            killer.execute(text(f"KILL QUERY {thread_id}"))

    def is_cancellation(self, error: SQLAlchemyError) -> bool:
        args = getattr(getattr(error, "orig", None), "args", ())
        return bool(args) and args[0] in INTERRUPTED_CODES
