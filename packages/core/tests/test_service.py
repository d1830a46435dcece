"""Tests for the query service facade."""

import pytest
from conftest import SpyAdapter

from querydesk.config import Settings
from querydesk.errors import BackendError, ValidationError
from querydesk.nl import build_prompt, clean_generated_sql
from querydesk.service import QueryDeskService, create_service
from querydesk_models import ParameterValue, PermissionMode, SuggestionKind


class FakeGenerator:
    def __init__(self, reply="SELECT * FROM customers"):
        self.reply = reply
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.fixture
def spy_service(spy_adapter):
    return QueryDeskService(
        spy_adapter,
        settings=Settings(sample_rows=2, schema_retry_delay_seconds=0),
    )


@pytest.fixture
def sqlite_service(settings):
    service = create_service(settings)
    yield service
    service.close()


class TestPermissionMode:
    def test_initial_mode_from_settings(self, spy_adapter):
        service = QueryDeskService(spy_adapter, settings=Settings(permission_mode="read_write"))

        assert service.permission_mode() is PermissionMode.READ_WRITE

    def test_update_mode(self, spy_service):
        assert spy_service.update_permission_mode("READ_WRITE") is True
        assert spy_service.permission_mode() is PermissionMode.READ_WRITE

    def test_update_mode_rejects_unknown(self, spy_service):
        with pytest.raises(ValidationError):
            spy_service.update_permission_mode("SUPERUSER")

        assert spy_service.permission_mode() is PermissionMode.READ_ONLY

    def test_read_only_blocks_then_read_write_allows(self, spy_service, spy_adapter):
        denied = spy_service.run_query("DELETE FROM customers")
        spy_service.update_permission_mode("READ_WRITE")
        allowed = spy_service.run_query("DELETE FROM customers")

        assert denied.errors_count == 1
        assert allowed.errors_count == 0
        assert spy_adapter.executed == [("DELETE FROM customers", {})]


class TestQueries:
    def test_run_template_query_accepts_dicts(self, spy_service, spy_adapter):
        spy_service.run_template_query(
            "SELECT * FROM customers WHERE id = {{id}}", [{"name": "id", "value": "2", "type": "number"}]
        )

        assert spy_adapter.executed == [("SELECT * FROM customers WHERE id = :id", {"id": 2})]

    def test_run_template_query_with_models(self, spy_service, spy_adapter):
        spy_service.run_template_query("SELECT ?", [ParameterValue(value="x")])

        assert spy_adapter.executed == [("SELECT :p1", {"p1": "x"})]

    def test_sqlite_round_trip(self, sqlite_service):
        result = sqlite_service.run_query("SELECT name FROM customers ORDER BY id LIMIT 2")

        assert result.rows == [{"name": "Alice"}, {"name": "Bob"}]


class TestSchema:
    def test_schema_version_builds_snapshot(self, spy_service, spy_adapter):
        header = spy_service.schema_version()

        assert header.version == 1
        assert header.table_count == 2
        assert spy_adapter.introspect_calls == 1

    def test_invalidate_bumps_version(self, spy_service):
        first = spy_service.schema_version().version

        assert spy_service.invalidate_schema_cache() is True

        assert spy_service.schema_version().version == first + 1

    def test_ddl_invalidates_cache(self, sqlite_service):
        before = sqlite_service.schema_version()
        sqlite_service.update_permission_mode("READ_WRITE")

        result = sqlite_service.run_query("CREATE TABLE products (sku TEXT PRIMARY KEY, price REAL)")
        after = sqlite_service.schema_version()

        assert result.error is None
        assert after.version > before.version
        assert after.table_count == before.table_count + 1

    def test_schema_with_data_includes_samples(self, spy_service):
        tables = spy_service.schema_with_data()

        assert [t.name for t in tables] == ["customers", "orders"]
        assert tables[0].values == ({"table": "customers", "i": 0}, {"table": "customers", "i": 1})

    def test_table_search(self, spy_service):
        tables = spy_service.schema_with_data(table_search="ORD")

        assert [t.name for t in tables] == ["orders"]

    def test_column_search_keeps_matching_columns_only(self, spy_service):
        tables = spy_service.schema_with_data(column_search="customer")

        assert [t.name for t in tables] == ["orders"]
        assert tables[0].column_names == ["customer_id"]

    def test_column_search_matches_data_type(self, spy_service):
        tables = spy_service.schema_with_data(column_search="timestamp")

        assert [(t.name, t.column_names) for t in tables] == [("customers", ["created_at"])]

    def test_limit(self, spy_service):
        assert len(spy_service.schema_with_data(limit=1)) == 1
        assert spy_service.schema_with_data(limit=0) == []

    def test_sample_failure_is_not_fatal(self):
        class NoSamples(SpyAdapter):
            def get_table_sample(self, table_name, schema=None, limit=5):
                raise BackendError("permission denied for table")

        service = QueryDeskService(NoSamples(), settings=Settings(schema_retry_delay_seconds=0))

        tables = service.schema_with_data()

        assert len(tables) == 2
        assert all(t.values == () for t in tables)

    def test_sqlite_schema_with_data(self, sqlite_service):
        tables = sqlite_service.schema_with_data(table_search="customers")

        assert len(tables) == 1
        assert len(tables[0].values) == 2
        assert tables[0].values[0]["name"] == "Alice"


class TestCompletion:
    def test_no_schema_before_first_read(self, spy_service, spy_adapter):
        assert spy_service.complete("SELECT * FROM ", 14) == []
        assert spy_adapter.introspect_calls == 0

    def test_uses_cached_schema(self, spy_service):
        spy_service.schema_version()

        suggestions = spy_service.complete("SELECT * FROM cu", 16)

        assert [(s.label, s.kind) for s in suggestions] == [("customers", SuggestionKind.TABLE)]

    def test_sampled_values_offered_after_browsing(self, sqlite_service):
        text = "SELECT * FROM customers WHERE name = "
        before = [s.label for s in sqlite_service.complete(text, len(text))]

        sqlite_service.schema_with_data(table_search="customers")
        after = [s.label for s in sqlite_service.complete(text, len(text))]

        assert "'Alice'" not in before
        assert after[:2] == ["'Alice'", "'Bob'"]

    def test_sampled_values_dropped_on_invalidate(self, sqlite_service):
        text = "SELECT * FROM customers WHERE name = "
        sqlite_service.schema_with_data(table_search="customers")

        sqlite_service.invalidate_schema_cache()
        sqlite_service.schema_version()

        assert "'Alice'" not in [s.label for s in sqlite_service.complete(text, len(text))]

    def test_max_suggestions_from_settings(self, spy_adapter):
        service = QueryDeskService(spy_adapter, settings=Settings(max_suggestions=2))

        assert len(service.complete("", 0)) == 2


class TestNaturalLanguage:
    def test_generates_from_cached_schema(self, spy_adapter):
        generator = FakeGenerator("```sql\nSELECT name FROM customers\n```")
        service = QueryDeskService(spy_adapter, settings=Settings(), sql_generator=generator)

        generated = service.generate_sql_from_natural_language("names of all customers")

        assert generated.sql == "SELECT name FROM customers"
        prompt = generator.prompts[0]
        assert "Table: customers" in prompt
        assert "customer_id -> customers.id" in prompt
        assert 'Natural Language Request: "names of all customers"' in prompt
        assert "valid for spy syntax" in prompt

    def test_explicit_schema_and_dialect(self, spy_adapter):
        generator = FakeGenerator()
        service = QueryDeskService(spy_adapter, settings=Settings(), sql_generator=generator)

        service.generate_sql_from_natural_language("anything", schema=[], dialect="postgresql")

        assert spy_adapter.introspect_calls == 0
        assert "valid for postgresql syntax" in generator.prompts[0]

    def test_generated_sql_is_not_executed(self, spy_adapter):
        service = QueryDeskService(spy_adapter, settings=Settings(), sql_generator=FakeGenerator("DELETE FROM customers"))

        generated = service.generate_sql_from_natural_language("remove everyone")

        assert generated.sql == "DELETE FROM customers"
        assert spy_adapter.executed == []

    def test_empty_request(self, spy_adapter):
        service = QueryDeskService(spy_adapter, settings=Settings(), sql_generator=FakeGenerator())

        with pytest.raises(ValidationError):
            service.generate_sql_from_natural_language("   ")

    def test_non_sql_reply(self, spy_adapter):
        service = QueryDeskService(spy_adapter, settings=Settings(), sql_generator=FakeGenerator("Sorry, I can't"))

        with pytest.raises(ValidationError, match="valid SQL"):
            service.generate_sql_from_natural_language("list customers")

    def test_generator_failure(self, spy_adapter):
        service = QueryDeskService(
            spy_adapter, settings=Settings(), sql_generator=FakeGenerator(RuntimeError("rate limited"))
        )

        with pytest.raises(BackendError, match="rate limited"):
            service.generate_sql_from_natural_language("list customers")

    def test_not_configured(self, spy_adapter):
        service = QueryDeskService(spy_adapter, settings=Settings(nl_model=""))

        with pytest.raises(BackendError, match="not configured"):
            service.generate_sql_from_natural_language("list customers", schema=[])

    def test_clean_generated_sql(self):
        assert clean_generated_sql("  with x as (select 1) select * from x ") == "with x as (select 1) select * from x"
        assert clean_generated_sql("```\nSELECT 1\n```") == "SELECT 1"

    def test_build_prompt_marks_keys(self):
        from conftest import SHOP_TABLES

        prompt = build_prompt("x", SHOP_TABLES, "sqlite")

        assert "id (INTEGER NOT NULL PRIMARY KEY)" in prompt
        assert "email (TEXT)" in prompt


class TestLifecycle:
    def test_close_disposes_adapter(self, spy_service, spy_adapter):
        spy_service.close()

        assert spy_adapter.disposed
