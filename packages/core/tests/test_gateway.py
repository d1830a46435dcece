"""Tests for the execution gateway."""

import threading

import pytest
from conftest import SpyAdapter
from pydantic import TypeAdapter

from querydesk.errors import BackendError, ValidationError
from querydesk.gateway import ExecutionGateway
from querydesk.permissions import PermissionModeStore
from querydesk_models import ParameterValue, PermissionMode, QueryRequest, RawQuery, TemplateQuery

ENDLESS_QUERY = (
    "WITH RECURSIVE r(i) AS (SELECT 1 UNION ALL SELECT i + 1 FROM r) SELECT count(*) FROM r"
)


def make_gateway(adapter, mode=PermissionMode.READ_ONLY, **kwargs):
    return ExecutionGateway(adapter, PermissionModeStore(mode), **kwargs)


class TestPermissionGate:
    def test_read_only_delete_never_reaches_adapter(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        result = gateway.execute(RawQuery(sql="DELETE FROM users WHERE id = 1"))

        assert result.error.startswith("Operation not allowed in READ_ONLY mode: DELETE")
        assert result.errors_count == 1
        assert result.rows == []
        assert spy_adapter.executed == []

    def test_mode_switch_allows_update(self, spy_adapter):
        store = PermissionModeStore(PermissionMode.READ_ONLY)
        gateway = ExecutionGateway(spy_adapter, store)

        denied = gateway.execute(RawQuery(sql="UPDATE users SET name = 'x'"))
        store.set("READ_WRITE")
        allowed = gateway.execute(RawQuery(sql="UPDATE users SET name = 'x'"))

        assert denied.error is not None
        assert allowed.error is None
        assert len(spy_adapter.executed) == 1

    def test_read_only_pragma_setter_never_reaches_adapter(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        result = gateway.execute(RawQuery(sql="PRAGMA user_version(42)"))

        assert result.errors_count == 1
        assert spy_adapter.executed == []

    def test_literal_content_does_not_trigger_denial(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        result = gateway.execute(RawQuery(sql="SELECT 'DROP TABLE users' AS s"))

        assert result.error is None
        assert len(spy_adapter.executed) == 1

    def test_template_write_is_checked_after_rendering(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        result = gateway.execute(
            TemplateQuery(template="DELETE FROM t WHERE id = :id", parameters=[ParameterValue(name="id", value=1)])
        )

        assert result.error is not None
        assert spy_adapter.executed == []


class TestExecute:
    def test_success_fills_telemetry(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        result = gateway.execute(RawQuery(sql="SELECT 1 AS n"))

        assert result.rows == [{"n": 1}]
        assert result.fields == ["n"]
        assert result.row_count == 1
        assert result.payload_size == len(b'[{"n": 1}]')
        assert result.total_time >= 0
        assert result.errors_count == 0
        assert result.error is None

    def test_template_parameters_are_bound(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        gateway.execute(
            TemplateQuery(
                template="SELECT * FROM users WHERE id = {{id}}",
                parameters=[ParameterValue(name="id", value="7", type="number")],
            )
        )

        assert spy_adapter.executed == [("SELECT * FROM users WHERE id = :id", {"id": 7})]

    def test_request_payloads_dispatch_on_kind(self, spy_adapter):
        gateway = make_gateway(spy_adapter)
        requests = TypeAdapter(list[QueryRequest]).validate_python(
            [
                {"kind": "raw", "sql": "SELECT 1"},
                {
                    "kind": "template",
                    "template": "SELECT * FROM users WHERE id = {{id}}",
                    "parameters": [{"name": "id", "defaultValue": "3", "type": "number"}],
                },
            ]
        )

        for request in requests:
            gateway.execute(request)

        assert isinstance(requests[1], TemplateQuery)
        assert spy_adapter.executed == [
            ("SELECT 1", {}),
            ("SELECT * FROM users WHERE id = :id", {"id": 3}),
        ]

    def test_backend_error_becomes_failed_result(self):
        adapter = SpyAdapter(error=BackendError('near "SELEC": syntax error'))
        gateway = make_gateway(adapter, PermissionMode.READ_WRITE)

        result = gateway.execute(RawQuery(sql="SELEC 1"))

        assert result.error == 'near "SELEC": syntax error'
        assert result.errors_count == 1
        assert result.rows == []

    def test_empty_sql_raises(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        with pytest.raises(ValidationError):
            gateway.execute(RawQuery(sql="  "))

    def test_only_comments_raises(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        with pytest.raises(ValidationError, match="no statement"):
            gateway.execute(RawQuery(sql="-- nothing here\n;"))

    def test_bad_template_parameters_raise(self, spy_adapter):
        gateway = make_gateway(spy_adapter)

        with pytest.raises(ValidationError):
            gateway.execute(TemplateQuery(template="SELECT :a", parameters=[]))

        assert spy_adapter.executed == []

    def test_default_timeout_passed_to_adapter(self):
        seen = {}

        class TimeoutSpy(SpyAdapter):
            def execute_statement(self, sql, parameters=None, *, timeout=None, cancel_event=None):
                seen["timeout"] = timeout
                return super().execute_statement(sql, parameters)

        gateway = make_gateway(TimeoutSpy(), default_timeout=12.5)

        gateway.execute(RawQuery(sql="SELECT 1"))
        assert seen["timeout"] == 12.5

        gateway.execute(RawQuery(sql="SELECT 1"), timeout=1)
        assert seen["timeout"] == 1

    def test_pre_set_cancel_event(self, spy_adapter):
        gateway = make_gateway(spy_adapter)
        event = threading.Event()
        event.set()

        result = gateway.execute(RawQuery(sql="SELECT 1"), cancel_event=event)

        assert "cancelled" in result.error
        assert spy_adapter.executed == []


class TestSchemaChange:
    def test_ddl_triggers_callback(self, spy_adapter):
        calls = []
        gateway = make_gateway(spy_adapter, PermissionMode.READ_WRITE, on_schema_change=lambda: calls.append(1))

        gateway.execute(RawQuery(sql="CREATE TABLE t (a int)"))

        assert calls == [1]

    def test_dml_does_not_trigger_callback(self, spy_adapter):
        calls = []
        gateway = make_gateway(spy_adapter, PermissionMode.READ_WRITE, on_schema_change=lambda: calls.append(1))

        gateway.execute(RawQuery(sql="INSERT INTO t VALUES (1)"))

        assert calls == []

    def test_failed_ddl_does_not_trigger_callback(self):
        calls = []
        adapter = SpyAdapter(error=BackendError("table exists"))
        gateway = make_gateway(adapter, PermissionMode.READ_WRITE, on_schema_change=lambda: calls.append(1))

        gateway.execute(RawQuery(sql="CREATE TABLE t (a int)"))

        assert calls == []


class TestSQLiteExecution:
    def test_select_rows(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)

        result = gateway.execute(RawQuery(sql="SELECT id, name FROM customers ORDER BY id"))

        assert result.error is None
        assert result.fields == ["id", "name"]
        assert result.rows[0] == {"id": 1, "name": "Alice"}
        assert result.row_count == 3
        assert result.payload_size > 0

    def test_template_against_sqlite(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)

        result = gateway.execute(
            TemplateQuery(
                template="SELECT name FROM customers WHERE id = ? OR name = ?",
                parameters=[ParameterValue(value="2", type="number"), ParameterValue(value="Carol")],
            )
        )

        assert [r["name"] for r in result.rows] == ["Bob", "Carol"]

    def test_write_in_read_write_mode(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter, PermissionMode.READ_WRITE)

        result = gateway.execute(RawQuery(sql="UPDATE orders SET status = 'shipped' WHERE status = 'paid'"))
        check = gateway.execute(RawQuery(sql="SELECT count(*) AS n FROM orders WHERE status = 'shipped'"))

        assert result.error is None
        assert result.row_count == 2
        assert result.rows == []
        assert check.rows == [{"n": 2}]

    def test_syntax_error(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)

        result = gateway.execute(RawQuery(sql="SELECT * FROM missing_table"))

        assert "missing_table" in result.error
        assert result.errors_count == 1

    def test_read_only_pragma_setter_leaves_file_untouched(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)

        denied = gateway.execute(RawQuery(sql="PRAGMA user_version(42)"))
        check = gateway.execute(RawQuery(sql="PRAGMA user_version"))

        assert denied.errors_count == 1
        assert check.rows == [{"user_version": 0}]

    def test_timeout_interrupts_statement(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)

        result = gateway.execute(RawQuery(sql=ENDLESS_QUERY), timeout=0.2)

        assert result.error == "Query cancelled: timed out after 0.2s"
        assert result.rows == []

    def test_cancel_event_interrupts_statement(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)
        event = threading.Event()
        timer = threading.Timer(0.2, event.set)
        timer.start()
        try:
            result = gateway.execute(RawQuery(sql=ENDLESS_QUERY), cancel_event=event)
        finally:
            timer.cancel()

        assert result.error == "Query cancelled: cancelled by caller"

    def test_connection_usable_after_cancellation(self, sqlite_adapter):
        gateway = make_gateway(sqlite_adapter)

        gateway.execute(RawQuery(sql=ENDLESS_QUERY), timeout=0.1)
        result = gateway.execute(RawQuery(sql="SELECT count(*) AS n FROM customers"))

        assert result.rows == [{"n": 3}]
