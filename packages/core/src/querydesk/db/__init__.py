"""Database connection and introspection helpers used by the dialect adapters."""

from querydesk.db.connection import (
    create_engine_for,
    detect_dialect_from_url,
    normalize_database_url,
    ping_engine,
)
from querydesk.db.introspection import get_table_sample, introspect_schema

__all__ = [
    "create_engine_for",
    "detect_dialect_from_url",
    "get_table_sample",
    "introspect_schema",
    "normalize_database_url",
    "ping_engine",
]
