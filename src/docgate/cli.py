"""
docgate command-line interface.

Commands:
- serve:   Run the HTTP server
- backup:  Write a backup set of one or more collections to a file
- restore: Restore collections from a backup file
- schemas: List the active schema definitions
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from docgate import __version__
from docgate.runtime import backup as backup_codec
from docgate.runtime.config import ServerConfig
from docgate.runtime.errors import DocgateError
from docgate.runtime.server import DocgateServices, build_services

app = typer.Typer(
    help="Schema-aware document access layer for MongoDB",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"docgate {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """docgate command-line interface."""


def _load_config(uri: str | None, database: str | None) -> ServerConfig:
    config = ServerConfig.from_env()
    if uri:
        config.mongodb_uri = uri
    if database:
        config.database = database
    return config


def _services(uri: str | None, database: str | None) -> DocgateServices:
    return build_services(_load_config(uri, database))


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(1)


URI_OPTION = typer.Option(None, "--uri", help="MongoDB connection string (default: $MONGODB_URI)")
DATABASE_OPTION = typer.Option(None, "--database", "-d", help="Database name")


# =============================================================================
# Commands
# =============================================================================


@app.command(name="serve")
def serve_command(
    host: str = typer.Option(None, "--host", help="Host to bind to (default: $HOST)"),
    port: int = typer.Option(None, "--port", "-p", help="Port to bind to (default: $PORT)"),
    uri: str = URI_OPTION,
    database: str = DATABASE_OPTION,
) -> None:
    """Run the HTTP server."""
    from docgate.runtime.server import run_app

    config = _load_config(uri, database)
    if host:
        config.host = host
    if port:
        config.port = port

    console.print(
        f"[bold]docgate[/bold] serving on http://{config.host}:{config.port}{config.api_prefix}"
    )
    run_app(config)


@app.command(name="backup")
def backup_command(
    collections: list[str] = typer.Argument(
        None,
        help="Collections to back up (default: all)",
    ),
    output: Path = typer.Option(
        Path("backup.json"),
        "--output",
        "-o",
        help="File to write the backup set to",
    ),
    include_data: bool = typer.Option(
        True,
        "--data/--no-data",
        help="Include documents, not just metadata",
    ),
    uri: str = URI_OPTION,
    database: str = DATABASE_OPTION,
) -> None:
    """Write a backup set to a file."""
    services = _services(uri, database)
    try:
        backup = services.backups.export(collections or None, include_data=include_data)
    except DocgateError as e:
        raise _fail(f"Backup failed: {e.message}")
    finally:
        services.db_manager.close()

    output.write_text(backup_codec.dumps(backup), encoding="utf-8")
    documents = sum(len(c.data) for c in backup.collections.values())
    console.print(
        f"[green]Backed up {len(backup.collections)} collections "
        f"({documents} documents) to {output}[/green]"
    )


@app.command(name="restore")
def restore_command(
    backup_file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Backup file written by 'docgate backup'",
    ),
    collections: list[str] = typer.Argument(
        None,
        help="Collections to restore (default: all in the backup)",
    ),
    uri: str = URI_OPTION,
    database: str = DATABASE_OPTION,
) -> None:
    """Restore collections from a backup file."""
    services = _services(uri, database)
    try:
        backup = backup_codec.loads(backup_file.read_text(encoding="utf-8"))
        report = services.backups.restore(backup, collections or None)
    except DocgateError as e:
        raise _fail(f"Restore failed: {e.message}")
    finally:
        services.db_manager.close()

    table = Table(title="Restore")
    table.add_column("Collection", style="cyan")
    table.add_column("Documents", justify="right")
    table.add_column("Indexes", justify="right")
    table.add_column("Errors")
    for result in report.results:
        errors = list(result.index_errors)
        if result.error:
            errors.append(f"[red]{result.error}[/red]")
        table.add_row(
            result.collection,
            str(result.documents_restored),
            str(result.indexes_restored),
            "\n".join(errors),
        )
    console.print(table)

    if not report.completed:
        raise _fail("Restore stopped before completing")
    console.print("[green]Restore complete[/green]")


@app.command(name="schemas")
def schemas_command(
    uri: str = URI_OPTION,
    database: str = DATABASE_OPTION,
) -> None:
    """List active schema definitions."""
    services = _services(uri, database)
    try:
        schemas = services.registry.list_active()
    except DocgateError as e:
        raise _fail(f"Could not list schemas: {e.message}")
    finally:
        services.db_manager.close()

    if not schemas:
        console.print("[yellow]No schemas registered[/yellow]")
        return

    table = Table(title="Schemas")
    table.add_column("Collection", style="cyan")
    table.add_column("Display name")
    table.add_column("Fields", justify="right")
    table.add_column("Updated")
    for schema in schemas:
        table.add_row(
            schema.collection_name,
            schema.display_name,
            str(len(schema.fields)),
            schema.updated_at.isoformat() if schema.updated_at else "",
        )
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
