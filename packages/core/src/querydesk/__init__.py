"""querydesk: SQL completion, schema caching and permission-gated execution."""

from querydesk.completion import CompletionEngine
from querydesk.errors import (
    BackendError,
    CancelledError,
    PermissionDeniedError,
    QueryDeskError,
    ValidationError,
)
from querydesk.gateway import ExecutionGateway
from querydesk.permissions import PermissionModeStore
from querydesk.schema_cache import SchemaCache
from querydesk.service import QueryDeskService, create_service

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "CancelledError",
    "CompletionEngine",
    "ExecutionGateway",
    "PermissionDeniedError",
    "PermissionModeStore",
    "QueryDeskError",
    "QueryDeskService",
    "SchemaCache",
    "ValidationError",
    "create_service",
]
