"""
Command Line Interface for GenBI.
"""

import json
import logging
from typing import Any, Dict

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from . import errors
from .config import settings
from .genbi import GenBI
from .models import ResultSet


logger = logging.getLogger(__name__)

# Rich console
console = Console()


def _service(ctx) -> GenBI:
    if ctx.obj.get("service") is None:
        ctx.obj["service"] = GenBI()
        ctx.call_on_close(ctx.obj["service"].close)
    return ctx.obj["service"]


def _fail(action: str, error: errors.GenBIError):
    console.print(f"[bold red]✗[/bold red] {action}: [red]{error.kind}[/red] {error.message}")
    raise click.ClickException(error.message)


def _connection_params(path, url, host, port, database, user, password) -> Dict[str, Any]:
    params = {
        "path": path,
        "url": url,
        "host": host,
        "port": port,
        "database": database,
        "user": user,
        "password": password,
    }
    return {k: v for k, v in params.items() if v is not None}


def _print_rows(result: ResultSet, limit: int = 50):
    table = Table(show_header=True, header_style="bold magenta")
    for column in result.columns:
        table.add_column(f"{column.name} ({column.semantic_type.value})")
    for row in result.rows[:limit]:
        table.add_row(*["" if row[c] is None else str(row[c]) for c in result.column_names])
    console.print(table)
    if result.row_count > limit:
        console.print(f"[dim]... {result.row_count - limit} more rows[/dim]")
    if result.truncated:
        console.print("[yellow]Note:[/yellow] result was truncated at the row limit")


def connection_options(f):
    """Shared connection detail options."""
    options = [
        click.option("--path", help="SQLite database file"),
        click.option("--url", help="mysql:// or postgres:// connection URL"),
        click.option("--host"),
        click.option("--port", type=int),
        click.option("--database"),
        click.option("--user"),
        click.option("--password", help="Password, or env:NAME to read it from the environment"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx, verbose):
    """GenBI: ask questions of your databases in natural language."""
    ctx.ensure_object(dict)
    logging.basicConfig(level=settings.log_level, format=settings.log_format)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command("add-connection")
@click.argument("name")
@click.option("--type", "engine", required=True, type=click.Choice(["sqlite", "mysql", "postgres"]))
@connection_options
@click.pass_context
def add_connection(ctx, name, engine, path, url, host, port, database, user, password):
    """Register a named database connection."""
    params = _connection_params(path, url, host, port, database, user, password)
    try:
        descriptor = _service(ctx).register_connection(name, engine, params)
    except errors.GenBIError as e:
        _fail("Error adding connection", e)
    console.print(f"[bold green]✓[/bold green] Connection registered: {descriptor.name} ({descriptor.id})")


@cli.command()
@click.pass_context
def connections(ctx):
    """List registered connections."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Details")

    for descriptor in _service(ctx).list_connections():
        table.add_row(
            descriptor.id,
            descriptor.name,
            descriptor.engine.value,
            json.dumps(descriptor.params),
        )
    console.print(table)


@cli.command("remove-connection")
@click.argument("connection_id")
@click.option("--force", is_flag=True, help="Remove even if saved queries use it (they become dangling)")
@click.pass_context
def remove_connection(ctx, connection_id, force):
    """Remove a registered connection."""
    try:
        dangling = _service(ctx).remove_connection(connection_id, force=force)
    except errors.GenBIError as e:
        _fail("Error removing connection", e)
    console.print(f"[bold green]✓[/bold green] Connection {connection_id} removed")
    if dangling:
        console.print(f"[yellow]Note:[/yellow] {dangling} saved queries are now dangling")


@cli.command("test-connection")
@click.argument("connection_id", required=False)
@click.option("--type", "engine", type=click.Choice(["sqlite", "mysql", "postgres"]))
@connection_options
@click.pass_context
def test_connection(ctx, connection_id, engine, path, url, host, port, database, user, password):
    """Test a registered connection, or connection details given as options."""
    service = _service(ctx)
    try:
        if connection_id:
            outcome = service.test_connection(connection_id=connection_id)
        else:
            params = _connection_params(path, url, host, port, database, user, password)
            outcome = service.test_connection(engine=engine, params=params)
    except errors.GenBIError as e:
        _fail("Connection test failed", e)
    console.print(f"[bold green]✓[/bold green] {outcome['databaseType']} connection works")


@cli.command()
@click.argument("connection_id")
@click.option("--table-name", help="Specific table name")
@click.option("--refresh", is_flag=True, help="Take a fresh snapshot")
@click.pass_context
def schema(ctx, connection_id, table_name, refresh):
    """Show the schema of a registered connection."""
    try:
        snapshot = _service(ctx).get_schema(connection_id, refresh=refresh)
    except errors.GenBIError as e:
        _fail("Error getting schema", e)

    if table_name:
        info = snapshot.table(table_name)
        if info is None:
            console.print(f"[yellow]Table '{table_name}' not found[/yellow]")
            return
        lines = [
            f"{c.name} {c.declared_type}{'' if c.nullable else ' NOT NULL'}" for c in info.columns
        ]
        console.print(Panel("\n".join(lines), title=f"Table: {info.name}"))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Table Name")
    table.add_column("Columns", justify="right")
    for info in snapshot.tables:
        table.add_row(info.name, str(len(info.columns)))
    console.print(table)


@cli.command()
@click.argument("question")
@click.option("--connection", "-c", "connection_id", help="Registered connection ID")
@click.option("--connection-string", help="Ad hoc connection string or SQLite path")
@click.option("--save", "save_as", help="Save the query under this name")
@click.pass_context
def query(ctx, question, connection_id, connection_string, save_as):
    """Ask a question in natural language."""
    console.print(f"[bold blue]Query:[/bold blue] {question}")
    service = _service(ctx)
    try:
        outcome = service.ask(question, connection_id=connection_id, connection_string=connection_string)
    except errors.GenBIError as e:
        _fail("Error processing query", e)

    console.print("\n[bold green]✓[/bold green] Generated SQL:")
    console.print(Syntax(outcome.translated.sql, "sql", theme="monokai", line_numbers=True))
    if outcome.translated.confidence == "low":
        console.print("[yellow]Note:[/yellow] schema was unavailable; translation confidence is low")

    console.print("\n[bold green]✓[/bold green] Execution Results:")
    _print_rows(outcome.result)

    viz = outcome.visualization
    recommended = ", ".join(k.value for k in viz.recommended)
    console.print(f"\n[bold cyan]Chart:[/bold cyan] {viz.chart_type.value} ({viz.rationale}); options: {recommended}")

    if save_as:
        if not connection_id:
            raise click.ClickException("--save requires a registered --connection")
        try:
            saved = service.save_outcome(save_as, outcome, connection_id)
        except errors.GenBIError as e:
            _fail("Error saving query", e)
        console.print(f"[bold green]✓[/bold green] Saved as {saved.name} ({saved.id})")


@cli.command()
@click.pass_context
def saved(ctx):
    """List saved queries."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Question")
    table.add_column("Chart")
    table.add_column("Rows", justify="right")
    table.add_column("Last Refreshed")

    for item in _service(ctx).list_queries():
        name = f"{item.name} [red](dangling)[/red]" if item.dangling else item.name
        refreshed = item.last_refreshed_at.isoformat() if item.last_refreshed_at else "-"
        table.add_row(
            item.id,
            name,
            item.text,
            item.visualization.chart_type.value,
            str(item.result.row_count),
            refreshed,
        )
    console.print(table)


@cli.command()
@click.argument("query_id")
@click.option("--wait", is_flag=True, help="Wait for an in-flight refresh instead of failing")
@click.pass_context
def refresh(ctx, query_id, wait):
    """Re-run a saved query with its stored SQL."""
    try:
        item = _service(ctx).refresh_query(query_id, policy="wait" if wait else "reject")
    except errors.GenBIError as e:
        _fail("Error refreshing query", e)
    console.print(f"[bold green]✓[/bold green] Refreshed {item.name}")
    _print_rows(item.result)


@cli.command()
@click.argument("query_id")
@click.argument("name")
@click.pass_context
def rename(ctx, query_id, name):
    """Rename a saved query."""
    try:
        item = _service(ctx).rename_query(query_id, name)
    except errors.GenBIError as e:
        _fail("Error renaming query", e)
    console.print(f"[bold green]✓[/bold green] Renamed to {item.name}")


@cli.command("delete-query")
@click.argument("query_id")
@click.pass_context
def delete_query(ctx, query_id):
    """Delete a saved query."""
    if _service(ctx).delete_query(query_id):
        console.print(f"[bold green]✓[/bold green] Deleted {query_id}")
    else:
        console.print(f"[yellow]No saved query with ID {query_id}[/yellow]")


@cli.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Port")
def serve(host, port):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "genbi.api.main:app",
        host=host or settings.app_host,
        port=port or settings.app_port,
        reload=settings.debug,
    )


def main():
    """Entry point for the CLI."""
    cli()
