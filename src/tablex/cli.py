"""
Click-based CLI for tablex.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .core.settings import load_settings
from .core.tasks import InlineTaskRunner
from .domain.errors import TablexError
from .domain.results import CommandResult
from .manager import TableManager
from .storage.object_store import DirectoryObjectStore
from .storage.sqlite import SQLiteStoragePort

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=err_console,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
            )
        ],
    )


def _fail(error: Exception) -> NoReturn:
    err_console.print(f"[red]✗ Error:[/red] {error}", markup=True, highlight=False)
    sys.exit(1)


def _emit_json(result: CommandResult) -> None:
    click.echo(json.dumps(result.as_json_dict(), indent=2, default=str))


class CliContext:
    """Lazily opened manager shared by the commands of one invocation"""

    def __init__(self, database: str, config: str | None) -> None:
        self.database = database
        self.config = config
        self._manager: TableManager | None = None

    @property
    def manager(self) -> TableManager:
        if self._manager is None:
            settings = load_settings(Path(self.config) if self.config else None)
            object_store = None
            if self.database != ":memory:":
                object_store = DirectoryObjectStore(Path(self.database).parent / ".tablex")
            self._manager = TableManager(
                SQLiteStoragePort(self.database),
                settings=settings,
                background=InlineTaskRunner(),
                object_store=object_store,
            )
        return self._manager


pass_context = click.make_pass_decorator(CliContext)


@click.group()
@click.version_option(version=__version__, prog_name="tablex")
@click.option(
    "--database",
    "-d",
    envvar="TABLEX_DATABASE",
    default="tablex.db",
    show_default=True,
    help="SQLite database file",
)
@click.option(
    "--config",
    "-c",
    envvar="TABLEX_CONFIG",
    type=click.Path(dir_okay=False),
    help="JSON settings file",
)
@click.option("--verbose", "-v", is_flag=True, help="Log statements and deferred work")
@click.pass_context
def cli(ctx: click.Context, database: str, config: str | None, verbose: bool) -> None:
    """tablex: schema management and data access for user tables"""
    configure_logging(verbose)
    ctx.obj = CliContext(database, config)


@cli.command()
@pass_context
def init(context: CliContext) -> None:
    """Create the system tables tablex needs"""
    try:
        context.manager.install_system_tables()
        console.print(f"[green]✓[/green] System tables ready in {context.database}")
    except TablexError as e:
        _fail(e)


@cli.command()
@click.option("--row-counts", is_flag=True, help="Count rows of every user table")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@pass_context
def tables(context: CliContext, row_counts: bool, as_json: bool) -> None:
    """List tables with their kind and access policy"""
    try:
        listed = context.manager.get_tables(with_row_counts=row_counts)
    except TablexError as e:
        _fail(e)

    if as_json:
        _emit_json(
            CommandResult(
                success=True,
                data={"tables": [table.model_dump(exclude={"sql"}) for table in listed]},
            )
        )
        return

    table_view = Table(title="Tables")
    table_view.add_column("Name", style="cyan")
    table_view.add_column("Kind")
    table_view.add_column("Policy")
    table_view.add_column("Rows", justify="right")
    for table in listed:
        rows = "" if table.row_count is None else str(table.row_count)
        table_view.add_row(table.name, table.kind, table.access_policy, rows)
    console.print(table_view)


@cli.command()
@click.argument("table")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@pass_context
def columns(context: CliContext, table: str, as_json: bool) -> None:
    """Show the columns of TABLE"""
    try:
        described = context.manager.get_table_columns(table)
        foreign_keys = {fk.column: fk for fk in context.manager.get_foreign_keys(table)}
    except TablexError as e:
        _fail(e)

    if as_json:
        _emit_json(
            CommandResult(
                success=True,
                data={
                    "columns": [column.model_dump() for column in described],
                    "foreign_keys": [fk.model_dump() for fk in foreign_keys.values()],
                },
            )
        )
        return

    table_view = Table(title=f"Columns of {table}")
    for heading in ("#", "Name", "Type", "Nullable", "Default", "Key", "References"):
        table_view.add_column(heading)
    for column in described:
        key = "PK" if column.primary_key else ("UNIQUE" if column.unique else "")
        reference = foreign_keys.get(column.name)
        table_view.add_row(
            str(column.ordinal),
            column.name,
            column.type,
            "yes" if column.nullable else "no",
            column.default.to_sql() if column.default else "",
            key,
            f"{reference.ref_table}.{reference.ref_column}" if reference else "",
        )
    console.print(table_view)


@cli.command()
@click.argument("table", required=False)
@pass_context
def indexes(context: CliContext, table: str | None) -> None:
    """List indexes of TABLE, or explicit indexes of every user table"""
    try:
        if table:
            listed = context.manager.get_table_indexes(table)
        else:
            listed = context.manager.get_all_user_indexes()
    except TablexError as e:
        _fail(e)

    table_view = Table(title="Indexes")
    for heading in ("Name", "Table", "Columns", "Unique", "Origin"):
        table_view.add_column(heading)
    for index in listed:
        table_view.add_row(
            index.name,
            index.table,
            ", ".join(index.columns),
            "yes" if index.unique else "no",
            index.origin,
        )
    console.print(table_view)


@cli.command()
@click.argument("sql")
@click.option("--param", "-p", "params", multiple=True, help="Positional parameter (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@pass_context
def query(context: CliContext, sql: str, params: tuple[str, ...], as_json: bool) -> None:
    """Run one read-only SELECT"""
    try:
        result = context.manager.execute_sql(sql, params)
    except TablexError as e:
        _fail(e)

    if as_json:
        _emit_json(CommandResult(success=True, data={"rows": result.rows}))
        return
    if not result.rows:
        console.print("[yellow]No rows[/yellow]")
        return

    table_view = Table()
    headings = list(result.rows[0].keys())
    for heading in headings:
        table_view.add_column(heading)
    for row in result.rows:
        table_view.add_row(*("" if row[h] is None else str(row[h]) for h in headings))
    console.print(table_view)


@cli.command()
@pass_context
def validate(context: CliContext) -> None:
    """Check system tables, foreign keys and table structure"""
    try:
        result = context.manager.validate_schema()
    except TablexError as e:
        _fail(e)

    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")
    if not result.valid:
        err_console.print("[red]✗ Schema validation failed[/red]")
        sys.exit(1)
    console.print("[green]✓ Schema is valid[/green]")


@cli.group()
def snapshot() -> None:
    """Create, inspect and restore schema snapshots"""


@snapshot.command("create")
@click.option("--name", "-n", help="Snapshot name")
@click.option("--description", "-m", help="Snapshot description")
@click.option("--created-by", help="Who created the snapshot")
@pass_context
def snapshot_create(
    context: CliContext, name: str | None, description: str | None, created_by: str | None
) -> None:
    """Capture the current schema"""
    try:
        created = context.manager.create_snapshot(name, description, created_by)
    except TablexError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Snapshot v{created.version} created ({created.id})")


@snapshot.command("list")
@click.option("--limit", default=20, show_default=True, type=int)
@click.option("--offset", default=0, show_default=True, type=int)
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@pass_context
def snapshot_list(context: CliContext, limit: int, offset: int, as_json: bool) -> None:
    """List snapshots, newest first"""
    try:
        page = context.manager.get_snapshots(limit, offset)
    except TablexError as e:
        _fail(e)

    if as_json:
        payload: dict[str, Any] = {
            "total": page.total,
            "snapshots": [
                snap.model_dump(exclude={"full_schema", "tables_json"}) for snap in page.snapshots
            ],
        }
        _emit_json(CommandResult(success=True, data=payload))
        return

    table_view = Table(title=f"Snapshots ({page.total} total)")
    for heading in ("Version", "Id", "Name", "Type", "Created"):
        table_view.add_column(heading)
    for snap in page.snapshots:
        table_view.add_row(
            f"v{snap.version}", snap.id, snap.name or "", snap.snapshot_type, snap.created_at or ""
        )
    console.print(table_view)


@snapshot.command("show")
@click.argument("snapshot_id")
@pass_context
def snapshot_show(context: CliContext, snapshot_id: str) -> None:
    """Print the schema captured by a snapshot"""
    try:
        found = context.manager.get_snapshot(snapshot_id)
    except TablexError as e:
        _fail(e)
    if found is None:
        _fail(LookupError(f"Snapshot '{snapshot_id}' not found"))

    console.print(f"Snapshot v{found.version}: {found.name}  [dim]{found.schema_hash}[/dim]")
    console.print(Syntax(found.full_schema, "sql", theme="monokai", line_numbers=False))


@snapshot.command("diff")
@click.argument("first_id")
@click.argument("second_id")
@pass_context
def snapshot_diff(context: CliContext, first_id: str, second_id: str) -> None:
    """Compare two snapshots"""
    try:
        comparison = context.manager.compare_snapshots(first_id, second_id)
    except TablexError as e:
        _fail(e)

    if comparison.is_empty:
        console.print("[green]No differences[/green]")
        return
    for name in comparison.added:
        console.print(f"  [green]+[/green] {name}")
    for name in comparison.removed:
        console.print(f"  [red]-[/red] {name}")
    for name in comparison.modified:
        console.print(f"  [yellow]~[/yellow] {name}")


@snapshot.command("restore")
@click.argument("snapshot_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@pass_context
def snapshot_restore(context: CliContext, snapshot_id: str, yes: bool) -> None:
    """Replace every user table with a snapshot's tables (current rows are lost)"""
    if not yes:
        click.confirm(
            "Restoring drops every user table and its rows. Continue?", abort=True
        )
    try:
        restored = context.manager.restore_snapshot(snapshot_id)
    except TablexError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Restored; recorded as v{restored.version}")


@snapshot.command("delete")
@click.argument("snapshot_id")
@pass_context
def snapshot_delete(context: CliContext, snapshot_id: str) -> None:
    """Delete one snapshot"""
    try:
        context.manager.delete_snapshot(snapshot_id)
    except TablexError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Snapshot {snapshot_id} deleted")


@snapshot.command("prune")
@click.option("--keep", required=True, type=int, help="Number of newest snapshots to keep")
@pass_context
def snapshot_prune(context: CliContext, keep: int) -> None:
    """Delete all but the newest snapshots"""
    try:
        deleted = context.manager.prune_snapshots(keep)
    except TablexError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Deleted {deleted} snapshots")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
