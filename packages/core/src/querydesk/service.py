"""Query service: the operations exposed to transports.

QueryDeskService wires the shared state (permission mode store, schema
cache) into the execution gateway and the completion engine. Transports
(JSON-RPC server, CLI) call only this class.
"""

import logging
import threading
from typing import Any

from querydesk.completion import CompletionEngine
from querydesk.config import Settings, get_settings
from querydesk.dialects import DialectAdapter, get_adapter
from querydesk.errors import BackendError
from querydesk.gateway import ExecutionGateway
from querydesk.nl import AgentSqlGenerator, SqlGenerator, generate_sql
from querydesk.permissions import PermissionModeStore
from querydesk.schema_cache import SchemaCache
from querydesk_models import (
    GeneratedSql,
    ParameterValue,
    PermissionMode,
    QueryResult,
    RawQuery,
    SchemaVersion,
    Suggestion,
    TableMeta,
    TableWithSample,
    TemplateQuery,
)

logger = logging.getLogger(__name__)


class QueryDeskService:
    """Facade over the completion engine, schema cache and execution gateway."""

    def __init__(
        self,
        adapter: DialectAdapter,
        *,
        settings: Settings | None = None,
        permissions: PermissionModeStore | None = None,
        schema_cache: SchemaCache | None = None,
        sql_generator: SqlGenerator | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.adapter = adapter
        self.permissions = permissions or PermissionModeStore(self.settings.permission_mode)
        self.schema_cache = schema_cache or SchemaCache(
            adapter.introspect,
            ttl_seconds=self.settings.schema_cache_ttl_seconds,
            retry_attempts=self.settings.schema_retry_attempts,
            retry_delay_seconds=self.settings.schema_retry_delay_seconds,
        )
        self.gateway = ExecutionGateway(
            adapter,
            self.permissions,
            default_timeout=self.settings.query_timeout_seconds,
            on_schema_change=self.schema_cache.invalidate,
        )
        self.completion = CompletionEngine(
            self.schema_cache.peek,
            max_suggestions=self.settings.max_suggestions,
        )
        self._sql_generator = sql_generator

    # ------------------------------------------------------------------
    # Natural language
    # ------------------------------------------------------------------

    def _get_sql_generator(self) -> SqlGenerator:
        if self._sql_generator is None:
            if not self.settings.nl_model:
                raise BackendError("SQL generation is not configured (set QUERYDESK_NL_MODEL)")
            self._sql_generator = AgentSqlGenerator(self.settings.nl_model)
        return self._sql_generator

    def generate_sql_from_natural_language(
        self,
        natural_language: str,
        schema: list[TableMeta] | None = None,
        dialect: str | None = None,
    ) -> GeneratedSql:
        """Generate SQL for a request; the cached schema is used when none is given."""
        tables = schema if schema is not None else list(self.schema_cache.read().tables)
        return generate_sql(
            natural_language,
            tables,
            dialect or self.adapter.dialect,
            self._get_sql_generator(),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_query(
        self,
        query: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> QueryResult:
        return self.gateway.execute(RawQuery(sql=query), timeout=timeout, cancel_event=cancel_event)

    def run_template_query(
        self,
        template_query: str,
        parameters: list[ParameterValue | dict[str, Any]],
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> QueryResult:
        request = TemplateQuery(template=template_query, parameters=parameters)
        return self.gateway.execute(request, timeout=timeout, cancel_event=cancel_event)

    def update_permission_mode(self, mode: str) -> bool:
        """Switch the permission mode. Raises ValidationError for unknown modes."""
        self.permissions.set(mode)
        return True

    def permission_mode(self) -> PermissionMode:
        return self.permissions.get()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def invalidate_schema_cache(self) -> bool:
        return self.schema_cache.invalidate()

    def schema_version(self) -> SchemaVersion:
        return self.schema_cache.header()

    def schema_with_data(
        self,
        table_search: str | None = None,
        column_search: str | None = None,
        limit: int | None = None,
    ) -> list[TableWithSample]:
        """Browse tables with a few sample rows each.

        Args:
            table_search: Case-insensitive substring of the table name
            column_search: Case-insensitive substring of a column name or
                type; only matching columns are kept and tables without any
                are dropped
            limit: Maximum number of tables returned
        """
        snapshot = self.schema_cache.read()
        tables = list(snapshot.tables)

        if table_search:
            needle = table_search.lower()
            tables = [t for t in tables if needle in t.name.lower()]

        if column_search:
            needle = column_search.lower()
            filtered = []
            for table in tables:
                columns = tuple(
                    c
                    for c in table.columns
                    if needle in c.name.lower() or needle in c.data_type.lower()
                )
                if columns:
                    filtered.append(table.model_copy(update={"columns": columns}))
            tables = filtered

        if limit is not None:
            tables = tables[: max(limit, 0)]

        return [self._with_sample(table, snapshot.version) for table in tables]

    def _with_sample(self, table: TableMeta, version: int) -> TableWithSample:
        values: list[dict[str, Any]] = []
        if self.settings.sample_rows > 0:
            try:
                values = self.adapter.get_table_sample(
                    table.name, schema=table.schema_name, limit=self.settings.sample_rows
                )
            except BackendError as e:
                logger.warning("Could not sample %s: %s", table.full_name, e)
            else:
                self.schema_cache.record_samples(version, table.name, values)
        return TableWithSample.model_validate({**table.model_dump(), "values": tuple(values)})

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete(self, text: str, cursor_offset: int) -> list[Suggestion]:
        return self.completion.complete(text, cursor_offset)

    def close(self) -> None:
        self.adapter.dispose()


def create_service(settings: Settings | None = None) -> QueryDeskService:
    """Create the service for the configured database."""
    settings = settings or get_settings()
    return QueryDeskService(get_adapter(settings), settings=settings)
