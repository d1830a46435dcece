"""Shared Pydantic models for querydesk."""

from querydesk_models.completion import DocumentPosition, Suggestion, SuggestionKind
from querydesk_models.query import (
    GeneratedSql,
    ParameterValue,
    PermissionMode,
    QueryRequest,
    QueryResult,
    RawQuery,
    TemplateQuery,
)
from querydesk_models.schema import (
    ColumnMeta,
    ForeignKeyRef,
    SchemaSnapshot,
    SchemaVersion,
    TableMeta,
    TableWithSample,
)

__version__ = "0.1.0"

__all__ = [
    # Completion
    "DocumentPosition",
    "Suggestion",
    "SuggestionKind",
    # Queries
    "GeneratedSql",
    "ParameterValue",
    "PermissionMode",
    "QueryRequest",
    "QueryResult",
    "RawQuery",
    "TemplateQuery",
    # Schema
    "ColumnMeta",
    "ForeignKeyRef",
    "SchemaSnapshot",
    "SchemaVersion",
    "TableMeta",
    "TableWithSample",
]
