"""Permission-gated query execution."""

import json
import logging
import threading
import time
from collections.abc import Callable

from opentelemetry import trace

from querydesk.dialects import DialectAdapter
from querydesk.errors import BackendError, PermissionDeniedError, ValidationError
from querydesk.permissions import PermissionModeStore, check_permission
from querydesk.templates import PreparedStatement, prepare_raw, prepare_template
from querydesk_models import QueryRequest, QueryResult, TemplateQuery

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("querydesk.gateway")


def _preview(sql: str) -> str:
    return sql[:200] + "..." if len(sql) > 200 else sql


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class ExecutionGateway:
    """Validates, permission-checks and dispatches queries to an adapter.

    Permission, backend and cancellation failures come back as a failed
    QueryResult. Malformed requests raise ValidationError.
    """

    def __init__(
        self,
        adapter: DialectAdapter,
        permissions: PermissionModeStore,
        *,
        default_timeout: float | None = None,
        on_schema_change: Callable[[], object] | None = None,
    ) -> None:
        self.adapter = adapter
        self.permissions = permissions
        self.default_timeout = default_timeout
        self._on_schema_change = on_schema_change

    def prepare(self, request: QueryRequest) -> PreparedStatement:
        """Resolve a request to SQL with bind markers and a parameter mapping."""
        if isinstance(request, TemplateQuery):
            return prepare_template(request.template, request.parameters)
        return prepare_raw(request.sql)

    def execute(
        self,
        request: QueryRequest,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> QueryResult:
        """Execute a raw or template query.

        Args:
            request: Query to run
            timeout: Seconds before the statement is interrupted
                (defaults to the gateway's default_timeout)
            cancel_event: Set from another thread to abort the statement

        Raises:
            ValidationError: Empty SQL or template parameters that don't match
        """
        prepared = self.prepare(request)
        mode = self.permissions.get()

        with tracer.start_as_current_span(
            "execute_query",
            attributes={
                "sql.preview": _preview(prepared.sql),
                "db.dialect": self.adapter.dialect,
                "permission.mode": mode.value,
            },
        ) as span:
            try:
                statements = check_permission(prepared.sql, mode)
            except PermissionDeniedError as e:
                span.set_attribute("permission.denied", True)
                return QueryResult.failure(str(e))

            if not statements:
                raise ValidationError("SQL query contains no statement")

            if cancel_event is not None and cancel_event.is_set():
                return QueryResult.failure("Query cancelled by caller before execution")

            start = time.perf_counter()
            try:
                result = self.adapter.execute_statement(
                    prepared.sql,
                    prepared.parameters,
                    timeout=timeout if timeout is not None else self.default_timeout,
                    cancel_event=cancel_event,
                )
            except BackendError as e:
                total_time = _elapsed_ms(start)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.warning("Query failed after %.1fms: %s", total_time, e)
                return QueryResult.failure(str(e), total_time=total_time)

            total_time = _elapsed_ms(start)
            payload_size = len(json.dumps(result.rows, default=str).encode("utf-8"))
            span.set_attribute("db.row_count", result.row_count)
            span.set_attribute("db.payload_size", payload_size)
            logger.debug(
                "Query returned %d rows (%d bytes) in %.1fms",
                result.row_count,
                payload_size,
                total_time,
            )

            if self._on_schema_change is not None and any(s.is_ddl for s in statements):
                logger.info("Schema-changing statement executed; invalidating schema cache")
                self._on_schema_change()

            return QueryResult(
                rows=result.rows,
                row_count=result.row_count,
                fields=result.fields,
                payload_size=payload_size,
                total_time=total_time,
            )
