"""Tests for database introspection against a real SQLite database."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError

from querydesk.db.introspection import (
    get_foreign_keys,
    get_table_comment,
    get_tables,
    introspect_schema,
)
from querydesk.errors import BackendError


@pytest.fixture
def engine(sqlite_url):
    engine = create_engine(sqlite_url)
    with engine.begin() as conn:
        conn.execute(text("CREATE VIEW paid_orders AS SELECT * FROM orders WHERE status = 'paid'"))
    yield engine
    engine.dispose()


class TestGetTables:
    def test_tables_and_views_sorted(self, engine):
        tables = get_tables(inspect(engine))

        assert tables == [
            {"name": "customers", "type": "BASE TABLE"},
            {"name": "orders", "type": "BASE TABLE"},
            {"name": "paid_orders", "type": "VIEW"},
        ]

    def test_views_not_supported(self):
        inspector = MagicMock()
        inspector.get_table_names.return_value = ["b", "a"]
        inspector.get_view_names.side_effect = NotImplementedError

        assert [t["name"] for t in get_tables(inspector)] == ["a", "b"]


class TestIntrospectSchema:
    def test_columns_and_keys(self, engine):
        tables = {t.name: t for t in introspect_schema(engine, catalog="main")}

        customers = tables["customers"]
        assert customers.catalog_name == "main"
        assert customers.column_names == ["id", "name", "email", "is_active", "created_at"]
        assert customers.primary_keys == ("id",)
        assert customers.column("id").is_primary_key
        assert customers.column("name").data_type == "TEXT"
        assert customers.column("name").is_nullable is False
        assert customers.column("email").is_nullable is True

        orders = tables["orders"]
        assert orders.column("total").data_type == "NUMERIC(10, 2)"
        assert [(fk.column_name, fk.referenced_table, fk.referenced_column) for fk in orders.foreign_keys] == [
            ("customer_id", "customers", "id")
        ]

    def test_view_type(self, engine):
        tables = {t.name: t for t in introspect_schema(engine)}

        assert tables["paid_orders"].type == "VIEW"
        assert "status" in tables["paid_orders"].column_names

    def test_failure_becomes_backend_error(self):
        engine = MagicMock()
        engine.dialect.name = "sqlite"

        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("unable to open database file"))

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr("querydesk.db.introspection.inspect", broken)
            with pytest.raises(BackendError, match="Failed to introspect schema"):
                introspect_schema(engine)


class TestHelpers:
    def test_table_comment_not_implemented(self):
        inspector = MagicMock()
        inspector.get_table_comment.side_effect = NotImplementedError

        assert get_table_comment(inspector, "t") is None

    def test_table_comment(self):
        inspector = MagicMock()
        inspector.get_table_comment.return_value = {"text": "Customer master data"}

        assert get_table_comment(inspector, "customers") == "Customer master data"

    def test_composite_foreign_key_split_per_column(self):
        inspector = MagicMock()
        inspector.get_foreign_keys.return_value = [
            {
                "name": "fk_line_order",
                "constrained_columns": ["order_id", "line_no"],
                "referred_table": "order_lines",
                "referred_columns": ["id", "no"],
            }
        ]

        refs = get_foreign_keys(inspector, "shipments")

        assert [(r.column_name, r.referenced_column) for r in refs] == [("order_id", "id"), ("line_no", "no")]
        assert all(r.constraint_name == "fk_line_order" for r in refs)
