"""querydesk CLI.

Commands:
    serve     Start the JSON-RPC server
    query     Run a SQL or template query
    schema    Browse tables with sample rows
    complete  Show completion suggestions for a cursor position
    generate  Generate SQL from a natural-language request
"""

import json
import sys
from contextlib import contextmanager

import click
from rich.table import Table

from querydesk.cli.utils import _get_cli_version, console, parse_param_option
from querydesk.errors import QueryDeskError
from querydesk.service import create_service
from querydesk_models import QueryResult


@contextmanager
def _service(mode: str | None = None):
    """Create the configured service, report errors and close it afterwards."""
    service = None
    try:
        service = create_service()
        if mode:
            service.update_permission_mode(mode)
        yield service
    except QueryDeskError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        if service is not None:
            service.close()


def _print_result(result: QueryResult, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return

    if result.error:
        console.print(f"[red]✗ {result.error}[/red]")
        return

    if result.fields:
        table = Table(show_header=True, header_style="bold")
        for name in result.fields:
            table.add_column(name)
        for row in result.rows:
            table.add_row(*("NULL" if row.get(f) is None else str(row.get(f)) for f in result.fields))
        console.print(table)

    console.print(
        f"[dim]{result.row_count} row(s), {result.payload_size} bytes, "
        f"{result.total_time:.1f} ms[/dim]"
    )


@click.group()
@click.version_option(version=_get_cli_version())
def main():
    """querydesk - SQL completion, schema browsing and guarded query execution."""
    pass


@main.command()
@click.option("--host", default=None, help="Host to bind (default: QUERYDESK_SERVER_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: QUERYDESK_SERVER_PORT)")
@click.option("--log-level", default="INFO", help="Logging level")
def serve(host: str | None, port: int | None, log_level: str):
    """Start the JSON-RPC server."""
    from querydesk.server import start_server

    start_server(host=host, port=port, log_level=log_level)


@main.command()
@click.argument("sql")
@click.option(
    "--param",
    "params",
    multiple=True,
    help="Template parameter: name=value, name:type=value or a bare positional value",
)
@click.option("--timeout", type=float, default=None, help="Statement timeout in seconds")
@click.option(
    "--mode",
    type=click.Choice(["READ_ONLY", "READ_WRITE"], case_sensitive=False),
    default=None,
    help="Permission mode for this invocation",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
def query(sql: str, params: tuple[str, ...], timeout: float | None, mode: str | None, as_json: bool):
    """Run SQL against the configured database.

    With --param the SQL is treated as a template ({{name}}, :name or ?).
    """
    parameters = [parse_param_option(p) for p in params]
    with _service(mode) as service:
        if parameters:
            result = service.run_template_query(sql, parameters, timeout=timeout)
        else:
            result = service.run_query(sql, timeout=timeout)
    _print_result(result, as_json)
    if result.error:
        sys.exit(1)


@main.command()
@click.option("--table", "-t", "table_search", default=None, help="Filter tables by name")
@click.option("--column", "-c", "column_search", default=None, help="Filter columns by name or type")
@click.option("--limit", "-n", type=int, default=None, help="Maximum number of tables")
@click.option("--samples/--no-samples", default=False, help="Show sample rows")
def schema(table_search: str | None, column_search: str | None, limit: int | None, samples: bool):
    """Browse the database schema."""
    with _service() as service:
        header = service.schema_version()
        tables = service.schema_with_data(table_search, column_search, limit)

    console.print(
        f"[bold]Schema v{header.version}[/bold] "
        f"[dim]({header.table_count} tables, built {header.last_modified:%Y-%m-%d %H:%M:%S})[/dim]"
    )
    if not tables:
        console.print("[dim]No matching tables.[/dim]")
        return

    for meta in tables:
        table = Table(title=f"{meta.full_name} [dim]{meta.type}[/dim]", title_justify="left")
        table.add_column("Column", style="cyan")
        table.add_column("Type")
        table.add_column("Null")
        table.add_column("Key")
        for column in meta.columns:
            table.add_row(
                column.name,
                column.data_type,
                "yes" if column.is_nullable else "no",
                "PK" if column.is_primary_key else "",
            )
        console.print(table)
        if samples and meta.values:
            for row in meta.values:
                console.print(f"  [dim]{json.dumps(row, default=str)}[/dim]")


@main.command()
@click.argument("text")
@click.option("--cursor", type=int, default=None, help="Cursor offset (default: end of text)")
def complete(text: str, cursor: int | None):
    """Show completion suggestions for TEXT."""
    offset = len(text) if cursor is None else cursor
    with _service() as service:
        # Completion only uses cached schema; warm it first
        service.schema_version()
        suggestions = service.complete(text, offset)

    if not suggestions:
        console.print("[dim]No suggestions.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Label", style="cyan")
    table.add_column("Kind")
    table.add_column("Insert")
    table.add_column("Detail", style="dim")
    for s in suggestions:
        table.add_row(s.label, s.kind.value, repr(s.insert_text), s.detail)
    console.print(table)


@main.command()
@click.argument("request")
@click.option("--dialect", default=None, help="Target dialect (default: configured database)")
def generate(request: str, dialect: str | None):
    """Generate SQL from a natural-language REQUEST (not executed)."""
    with _service() as service:
        generated = service.generate_sql_from_natural_language(request, dialect=dialect)
    click.echo(generated.sql)


if __name__ == "__main__":
    main()
