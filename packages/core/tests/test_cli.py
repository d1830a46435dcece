"""Tests for the querydesk CLI."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from querydesk.cli.main import main
from querydesk.cli.utils import parse_param_option
from querydesk.config import reset_settings


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def shop_env(monkeypatch, sqlite_url):
    monkeypatch.setenv("QUERYDESK_DATABASE_URL", sqlite_url)
    reset_settings()


class TestMainGroup:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("serve", "query", "schema", "complete", "generate"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0

    @pytest.mark.parametrize("cmd", ["serve", "query", "schema", "complete", "generate"])
    def test_command_help(self, runner, cmd):
        result = runner.invoke(main, [cmd, "--help"])

        assert result.exit_code == 0, f"'{cmd} --help' failed: {result.output}"


class TestQuery:
    def test_select(self, runner, shop_env):
        result = runner.invoke(main, ["query", "SELECT name FROM customers WHERE id = 1"])

        assert result.exit_code == 0, result.output
        assert "Alice" in result.output
        assert "1 row(s)" in result.output

    def test_json_output(self, runner, shop_env):
        result = runner.invoke(main, ["query", "--json", "SELECT id FROM customers ORDER BY id"])

        payload = json.loads(result.output)
        assert payload["rows"] == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert payload["rowCount"] == 3

    def test_write_denied_in_read_only(self, runner, shop_env):
        result = runner.invoke(main, ["query", "DELETE FROM orders"])

        assert result.exit_code == 1
        assert "READ_ONLY" in result.output

    def test_template_with_mode(self, runner, shop_env):
        result = runner.invoke(
            main,
            [
                "query",
                "--mode",
                "read_write",
                "--param",
                "s=done",
                "--param",
                "id:number=10",
                "UPDATE orders SET status = :s WHERE id = :id",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "1 row(s)" in result.output

    def test_template_error_exits_nonzero(self, runner, shop_env):
        result = runner.invoke(main, ["query", "--param", "a=1", "SELECT :a, :b"])

        assert result.exit_code == 1
        assert "Missing value" in result.output


class TestSchemaAndCompletion:
    def test_schema_filtered(self, runner, shop_env):
        result = runner.invoke(main, ["schema", "--table", "cust"])

        assert result.exit_code == 0, result.output
        assert "Schema v1" in result.output
        assert "customers" in result.output
        assert "customer_id" not in result.output

    def test_schema_no_match(self, runner, shop_env):
        result = runner.invoke(main, ["schema", "--table", "zzz"])

        assert "No matching tables" in result.output

    def test_complete(self, runner, shop_env):
        result = runner.invoke(main, ["complete", "SELECT * FROM ord"])

        assert result.exit_code == 0, result.output
        assert "orders" in result.output

    def test_generate_without_model(self, runner, shop_env):
        result = runner.invoke(main, ["generate", "all customers"])

        assert result.exit_code == 1
        assert "not configured" in result.output


class TestServe:
    def test_serve_passes_options(self, runner):
        with patch("querydesk.server.start_server") as start_server:
            result = runner.invoke(main, ["serve", "--host", "0.0.0.0", "--port", "9000"])

        assert result.exit_code == 0
        start_server.assert_called_once_with(host="0.0.0.0", port=9000, log_level="INFO")


class TestParamOption:
    def test_named(self):
        p = parse_param_option("name=Alice")

        assert (p.name, p.value, p.type) == ("name", "Alice", None)

    def test_typed(self):
        p = parse_param_option("id:number=5")

        assert (p.name, p.value, p.type) == ("id", "5", "number")

    def test_positional(self):
        p = parse_param_option("42")

        assert p.name is None
        assert p.value == "42"

    def test_value_may_contain_equals(self):
        assert parse_param_option("expr=a=b").value == "a=b"
