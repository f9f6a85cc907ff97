"""
Command-line interface for tablesync.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from functools import wraps
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence

import click
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ReconciliationConfig, TablesyncConfig
from .database.connection import ConnectionConfig, ConnectionPool
from .database.introspection import SchemaIntrospector
from .exceptions import TablesyncError
from .registry import SchemaRegistry
from .schema.model import TableDescriptor
from .schema.operations import OperationMode
from .schema.reconciler import ReconciliationResult, ReconciliationStatus


console = Console()

STATUS_STYLES = {
    ReconciliationStatus.CREATED: "green",
    ReconciliationStatus.ALTERED: "yellow",
    ReconciliationStatus.UNCHANGED: "dim",
    ReconciliationStatus.PLANNED: "cyan",
}


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TablesyncError as e:
            console.print(f"[red]Error:[/red] {e}", highlight=False)
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}", highlight=False)
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """tablesync: keep PostgreSQL tables in sync with declared schemas."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


def _load_config(ctx: click.Context, path: str) -> TablesyncConfig:
    config = TablesyncConfig.from_yaml(path)
    config.logging.configure(debug=ctx.obj.get("debug", False) or config.debug)
    return config


@asynccontextmanager
async def _open_pool(config: TablesyncConfig) -> AsyncIterator[ConnectionPool]:
    pool = ConnectionPool(config.get_connection_config())
    await pool.initialize()
    try:
        yield pool
    finally:
        await pool.close()


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="tablesync.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new tablesync configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    _create_default_config().to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the database settings and declare your schemas")
    console.print(f"2. Run: tablesync validate-config -c {output}")
    console.print(f"3. Run: tablesync plan -c {output}")
    console.print(f"4. Run: tablesync sync -c {output}")


@main.command()
@config_option
@click.pass_context
@handle_errors
def validate_config(ctx, config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    tablesync_config = _load_config(ctx, config)
    tablesync_config.validate_config()

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(tablesync_config)


@main.command()
@config_option
@click.option(
    "--schema",
    "-s",
    "schema_names",
    multiple=True,
    help="Only plan these schemas (repeatable)",
)
@click.pass_context
@handle_errors
def plan(ctx, config: str, schema_names: Sequence[str]):
    """Show the changes and statements sync would run, without running them."""
    tablesync_config = _load_config(ctx, config)
    tablesync_config.validate_config()
    schemas = _select_schemas(tablesync_config, schema_names)

    async def run_plan() -> List[ReconciliationResult]:
        async with _open_pool(tablesync_config) as pool:
            registry = SchemaRegistry(pool, tablesync_config.reconciliation)
            results = []
            for schema in schemas:
                registry.define(schema)
                results.append(await registry.plan(schema.name))
            return results

    results = asyncio.run(run_plan())
    for result in results:
        _display_result_detail(result)
    _display_results(results, title="Plan")


@main.command()
@config_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.pass_context
@handle_errors
def sync(ctx, config: str, dry_run: bool):
    """Create or reconcile every declared schema, then run seeding hooks."""
    tablesync_config = _load_config(ctx, config)
    tablesync_config.validate_config()

    reconciliation = tablesync_config.reconciliation
    if dry_run:
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")
        reconciliation = reconciliation.model_copy(update={"mode": OperationMode.DRY_RUN})

    async def run_sync() -> List[ReconciliationResult]:
        async with _open_pool(tablesync_config) as pool:
            registry = SchemaRegistry(pool, reconciliation)
            results = await registry.startup(tablesync_config.schemas)
            return results

    results = asyncio.run(run_sync())
    if dry_run:
        for result in results:
            _display_result_detail(result)
    _display_results(results, title="Sync")


@main.command()
@config_option
@click.argument("table")
@click.option(
    "--namespace",
    "-n",
    default=None,
    help="PostgreSQL schema of the table (default: configured namespace)",
)
@click.pass_context
@handle_errors
def inspect(ctx, config: str, table: str, namespace: Optional[str]):
    """Print the live structure of TABLE as a schema declaration."""
    tablesync_config = _load_config(ctx, config)

    async def run_inspect() -> TableDescriptor:
        async with _open_pool(tablesync_config) as pool:
            introspector = SchemaIntrospector(
                pool, namespace=namespace or tablesync_config.reconciliation.namespace
            )
            return await introspector.read(table)

    descriptor = asyncio.run(run_inspect())
    click.echo(yaml.safe_dump(descriptor.to_dict(), default_flow_style=False, sort_keys=False))


@main.command()
@config_option
@click.pass_context
@handle_errors
def test_connection(ctx, config: str):
    """Test the database connection."""
    console.print("[blue]Testing connection...[/blue]")
    tablesync_config = _load_config(ctx, config)

    async def run_connection_test():
        pool = ConnectionPool(tablesync_config.get_connection_config())
        try:
            await pool.initialize()
            return await pool.test_connection()
        except TablesyncError as e:
            return {"status": "failed", "error": str(e)}
        finally:
            await pool.close()

    info = asyncio.run(run_connection_test())
    if info["status"] != "connected":
        console.print(f"  [red]✗ Connection failed: {info['error']}[/red]", highlight=False)
        sys.exit(1)

    console.print("  [green]✓ Connected successfully[/green]")
    console.print(f"     Database: {info['database']} (schema {info['schema']})")
    console.print(f"     User: {info['user']}")
    console.print(f"     PostgreSQL version: {info['version'].split(',')[0]}")


def _select_schemas(config: TablesyncConfig, names: Sequence[str]) -> List[TableDescriptor]:
    if not names:
        return list(config.schemas)
    return [config.get_schema(name) for name in names]


def _create_default_config() -> TablesyncConfig:
    """Create a sample configuration."""
    return TablesyncConfig(
        database=ConnectionConfig(
            host="localhost",
            port=5432,
            database="app",
            user="postgres",
            password="${POSTGRES_PASSWORD}",
        ),
        reconciliation=ReconciliationConfig(),
        schemas=[
            TableDescriptor(
                name="users",
                fields=[
                    {"name": "id", "type": "serial"},
                    {"name": "email", "type": "varchar", "size": 128},
                    {"name": "name", "type": "varchar", "size": 64},
                    {"name": "is_admin", "type": "boolean", "default_value": False},
                    {"name": "password", "type": "varchar", "size": 128, "server_only": True},
                ],
                indexes=["email"],
            ),
        ],
    )


def _display_config_summary(config: TablesyncConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    connection = config.get_connection_config()
    console.print(
        f"Database: {connection.user}@{connection.host}:{connection.port}/{connection.database}",
        highlight=False,
    )
    console.print(
        f"Namespace: {config.reconciliation.namespace or '(current schema)'}, "
        f"mode: {config.reconciliation.mode.value}, "
        f"transactional: {config.reconciliation.transactional}",
        highlight=False,
    )

    schema_table = Table(title="Schemas")
    schema_table.add_column("Name", style="cyan")
    schema_table.add_column("Fields", style="magenta")
    schema_table.add_column("Primary Key", style="green")
    schema_table.add_column("Indexes", style="yellow")

    for schema in config.schemas:
        schema_table.add_row(
            schema.name,
            str(len(schema.physical_fields)),
            schema.effective_primary_key or "-",
            ", ".join(schema.indexes) or "-",
        )

    console.print(schema_table)


def _display_result_detail(result: ReconciliationResult):
    """Print the changes and statements of one result."""
    console.print(f"\n[bold]{result.table}[/bold] ({result.status.value})")
    for change in result.changes:
        style = "red" if change.is_destructive else "white"
        console.print(f"  [{style}]- {change.description}[/{style}]", highlight=False)
    for statement in result.statements:
        console.print(statement, markup=False, highlight=False)


def _display_results(results: Sequence[ReconciliationResult], title: str):
    """Display a summary table of reconciliation results."""
    table = Table(title=title)
    table.add_column("Table", style="cyan")
    table.add_column("Status")
    table.add_column("Changes", justify="right")
    table.add_column("Statements", justify="right")
    table.add_column("Time (ms)", justify="right")

    for result in results:
        style = STATUS_STYLES.get(result.status, "white")
        table.add_row(
            result.table,
            f"[{style}]{result.status.value}[/{style}]",
            str(len(result.changes)),
            str(len(result.statements)),
            f"{result.execution_time_ms:.1f}",
        )

    console.print(table)


if __name__ == "__main__":
    main()
