"""SQLAlchemy-backed dialect adapter.

The backend-specific variants subclass SQLAlchemyAdapter and only override
the hooks for timeouts, interruption and error translation.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Connection, Engine, text
from sqlalchemy.exc import SQLAlchemyError

from querydesk.db.connection import create_engine_for
from querydesk.db.connection import ping_engine
from querydesk.db.introspection import get_table_sample as db_get_table_sample
from querydesk.db.introspection import introspect_schema
from querydesk.errors import BackendError, CancelledError
from querydesk_models import TableMeta

logger = logging.getLogger(__name__)


@dataclass
class SQLAdapterConfig:
    """Configuration for a SQLAlchemy dialect adapter."""

    database_url: str = ""
    schema: str | None = None
    engine_kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatementResult:
    """Rows as generic mappings, independent of the driver."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)
    row_count: int = 0


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


class _Watchdog:
    """Interrupts a running statement on timeout or when cancel_event is set."""

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        interrupt: Callable[[], None],
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> None:
        self._interrupt = interrupt
        self._timeout = timeout
        self._cancel_event = cancel_event
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self.fired = False
        self.reason: str | None = None

    def __enter__(self) -> "_Watchdog":
        if self._timeout is not None or self._cancel_event is not None:
            self._thread = threading.Thread(target=self._run, name="querydesk-watchdog", daemon=True)
            self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._done.set()
        if self._thread is not None:
            self._thread.join()

    def _run(self) -> None:
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while not self._done.is_set():
            if self._cancel_event is not None and self._cancel_event.is_set():
                self.reason = "cancelled by caller"
                break
            if deadline is not None and time.monotonic() >= deadline:
                self.reason = f"timed out after {self._timeout:g}s"
                break
            self._done.wait(self.POLL_INTERVAL)
        else:
            return

        self.fired = True
        logger.info("Interrupting running statement: %s", self.reason)
        try:
            self._interrupt()
        except Exception as e:
            logger.warning("Failed to interrupt statement: %s", e)


class SQLAlchemyAdapter:
    """Generic adapter for any backend SQLAlchemy can reach.

    Owns one lazily created engine. Statements are bound with ``text()``,
    which renders ``:name`` markers in the driver's own paramstyle.
    """

    dialect = "generic"
    default_schema: str | None = None
    native_timeout = False
    engine_defaults: dict[str, Any] = {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    def __init__(self, config: SQLAdapterConfig) -> None:
        self.config = config
        self._engine: Engine | None = None
        self._lock = threading.Lock()

    @property
    def schema(self) -> str | None:
        return self.config.schema or self.default_schema

    def connect(self) -> Engine:
        """Get the engine for this connection, creating it on first use."""
        with self._lock:
            if self._engine is None:
                engine_kwargs = {**self.engine_defaults, **self.config.engine_kwargs}
                self._engine = create_engine_for(self.config.database_url, engine_kwargs)
            return self._engine

    def dispose(self) -> None:
        """Close pooled connections."""
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    def test_connection(self) -> dict[str, Any]:
        """Test database connectivity."""
        return ping_engine(self.connect())

    def catalog_name(self, engine: Engine) -> str | None:
        return engine.url.database

    def introspect(self) -> list[TableMeta]:
        """Introspect tables, columns and keys of the configured schema."""
        engine = self.connect()
        return introspect_schema(engine, schema=self.schema, catalog=self.catalog_name(engine))

    def get_table_sample(
        self, table_name: str, schema: str | None = None, limit: int = 5
    ) -> list[dict[str, Any]]:
        """Get sample rows from a table."""
        rows = db_get_table_sample(
            self.connect(), table_name, schema=schema or self.schema, limit=limit
        )
        return [{k: _jsonable(v) for k, v in row.items()} for row in rows]

    def execute_statement(
        self,
        sql: str,
        parameters: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StatementResult:
        """Execute one statement with bound parameters and commit it.

        Raises:
            CancelledError: The statement was interrupted by timeout or cancel_event
            BackendError: Any other backend failure
        """
        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError("Query cancelled by caller before execution")

        engine = self.connect()
        try:
            with engine.connect() as conn:
                server_timeout = timeout if self.server_enforces_timeout(conn, sql) else None
                watchdog = _Watchdog(
                    lambda: self.interrupt(conn),
                    timeout if server_timeout is None else None,
                    cancel_event,
                )
                with watchdog:
                    try:
                        self.apply_timeout(conn, server_timeout)
                        result = conn.execute(text(sql), parameters or {})
                        if result.returns_rows:
                            fields = list(result.keys())
                            rows = [dict(zip(fields, map(_jsonable, row))) for row in result]
                            row_count = len(rows)
                        else:
                            fields, rows = [], []
                            row_count = max(result.rowcount, 0)
                        conn.commit()
                    except SQLAlchemyError as e:
                        if watchdog.fired:
                            raise CancelledError(f"Query cancelled: {watchdog.reason}") from e
                        if server_timeout is not None and self.is_cancellation(e):
                            raise CancelledError(
                                f"Query cancelled: timed out after {timeout:g}s"
                            ) from e
                        raise
                    finally:
                        self.reset_timeout(conn, server_timeout)
        except SQLAlchemyError as e:
            raise BackendError(self.translate_error(e)) from e

        return StatementResult(rows=rows, fields=fields, row_count=row_count)

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    def server_enforces_timeout(self, conn: Connection, sql: str) -> bool:
        """Whether apply_timeout bounds ``sql`` on the server.

        When it does not, the watchdog enforces the timeout instead.
        """
        return self.native_timeout

    def apply_timeout(self, conn: Connection, timeout: float | None) -> None:
        """Set a server-side timeout for the next statement."""

    def reset_timeout(self, conn: Connection, timeout: float | None) -> None:
        """Undo apply_timeout when it changed session state."""

    def interrupt(self, conn: Connection) -> None:
        """Abort the statement running on ``conn`` from another thread."""
        dbapi_conn = conn.connection.dbapi_connection
        for name in ("cancel", "interrupt"):
            method = getattr(dbapi_conn, name, None)
            if callable(method):
                method()
                return
        logger.warning("%s driver has no way to interrupt a running statement", self.dialect)

    def is_cancellation(self, error: SQLAlchemyError) -> bool:
        """Whether the backend aborted the statement because of a timeout."""
        return False

    def translate_error(self, error: SQLAlchemyError) -> str:
        """Turn a driver exception into a readable message."""
        orig = getattr(error, "orig", None)
        message = str(orig if orig is not None else error).strip()
        return message or type(error).__name__
