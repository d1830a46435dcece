"""Shared fixtures: a small SQLite database and a recording adapter."""

import sqlite3

import pytest

from querydesk.config import Settings, reset_settings
from querydesk.dialects import StatementResult, create_adapter
from querydesk_models import ColumnMeta, ForeignKeyRef, TableMeta

SHOP_DDL = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    is_active BOOLEAN,
    created_at TIMESTAMP
);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    customer_id INTEGER NOT NULL REFERENCES customers(id),
    total NUMERIC(10, 2),
    status TEXT
);
INSERT INTO customers (id, name, email, is_active, created_at) VALUES
    (1, 'Alice', 'alice@example.com', 1, '2024-01-01 10:00:00'),
    (2, 'Bob', NULL, 0, '2024-02-01 11:30:00'),
    (3, 'Carol', 'carol@example.com', 1, '2024-03-01 09:15:00');
INSERT INTO orders (id, customer_id, total, status) VALUES
    (10, 1, 25.5, 'paid'),
    (11, 1, 10, 'open'),
    (12, 3, 99.99, 'paid');
"""


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    """Keep QUERYDESK_* variables from the environment out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("QUERYDESK_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def sqlite_path(tmp_path):
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(SHOP_DDL)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def sqlite_url(sqlite_path):
    return f"sqlite:///{sqlite_path}"


@pytest.fixture
def sqlite_adapter(sqlite_url):
    adapter = create_adapter(sqlite_url)
    yield adapter
    adapter.dispose()


@pytest.fixture
def settings(sqlite_url):
    return Settings(
        database_url=sqlite_url,
        schema_retry_delay_seconds=0,
        sample_rows=2,
    )


SHOP_TABLES = [
    TableMeta(
        name="customers",
        columns=(
            ColumnMeta(name="id", data_type="INTEGER", is_nullable=False, is_primary_key=True),
            ColumnMeta(name="name", data_type="TEXT", is_nullable=False),
            ColumnMeta(name="email", data_type="TEXT"),
            ColumnMeta(name="is_active", data_type="BOOLEAN"),
            ColumnMeta(name="created_at", data_type="TIMESTAMP"),
        ),
        primary_keys=("id",),
    ),
    TableMeta(
        name="orders",
        columns=(
            ColumnMeta(name="id", data_type="INTEGER", is_nullable=False, is_primary_key=True),
            ColumnMeta(name="customer_id", data_type="INTEGER", is_nullable=False),
            ColumnMeta(name="total", data_type="NUMERIC(10, 2)"),
            ColumnMeta(name="status", data_type="TEXT"),
        ),
        primary_keys=("id",),
        foreign_keys=(
            ForeignKeyRef(column_name="customer_id", referenced_table="customers", referenced_column="id"),
        ),
    ),
]


class SpyAdapter:
    """Adapter double that records statements instead of running them."""

    dialect = "spy"

    def __init__(self, tables=None, rows=None, error=None):
        self.tables = list(SHOP_TABLES if tables is None else tables)
        self.rows = rows if rows is not None else [{"n": 1}]
        self.error = error
        self.executed: list[tuple[str, dict]] = []
        self.introspect_calls = 0
        self.disposed = False

    def connect(self):
        return None

    def introspect(self):
        self.introspect_calls += 1
        return list(self.tables)

    def execute_statement(self, sql, parameters=None, *, timeout=None, cancel_event=None):
        self.executed.append((sql, dict(parameters or {})))
        if self.error is not None:
            raise self.error
        fields = list(self.rows[0]) if self.rows else []
        return StatementResult(rows=list(self.rows), fields=fields, row_count=len(self.rows))

    def test_connection(self):
        return {"connected": True}

    def get_table_sample(self, table_name, schema=None, limit=5):
        return [{"table": table_name, "i": i} for i in range(limit)]

    def dispose(self):
        self.disposed = True


@pytest.fixture
def spy_adapter():
    return SpyAdapter()
