"""CLI interface for heartbeat-collector.

Settings come from ~/.heartbeat-collector/config.yaml, environment
variables, or flags, in increasing priority.

Quick start:
    heartbeat-collector serve                          # both listeners
    heartbeat-collector register svc-a --ttl 30s       # write directly to the DB
    heartbeat-collector check svc-a                    # exit 1 if dead
    heartbeat-collector list                           # everything stored
    heartbeat-collector purge svc-a
"""

import json
import logging
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from heartbeat_collector import __version__
from heartbeat_collector.config import ConfigError, Settings, load_settings
from heartbeat_collector.service import (
    HeartbeatNotFound,
    HeartbeatService,
    HeartbeatValidationError,
    RegisterInput,
)
from heartbeat_collector.store import SQLiteHeartbeatStore, StorageError

app = typer.Typer(
    name="heartbeat-collector",
    help="A service to collect and monitor heartbeats",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _open_service(settings: Settings) -> HeartbeatService:
    try:
        store = SQLiteHeartbeatStore(settings.db_path)
    except StorageError as e:
        _fail(f"Storage error: {e}", code=2)
    return HeartbeatService(store, model=settings.freshness_model)


def _fail(message: str, code: int = 1) -> NoReturn:
    err_console.print(f"[red]{message}[/red]")
    raise typer.Exit(code)


@app.callback()
def main(
    ctx: typer.Context,
    config: Path = typer.Option(
        None, "--config", "-c", help="Path to config.yaml"),
    db_path: str = typer.Option(
        None, "--db-path", envvar="SQLITE_DSN", help="Path to the SQLite database file"),
    public_addr: str = typer.Option(
        None, "--public-addr", envvar="PORT_ADDR", help="Address for the read-only listener"),
    admin_addr: str = typer.Option(
        None, "--admin-addr", envvar="ADMIN_PORT_ADDR", help="Address for the write listener"),
    model: str = typer.Option(
        None, "--model", "-m", envvar="FRESHNESS_MODEL", help="Freshness model: explicit|implicit"),
    log_level: str = typer.Option(
        None, "--log-level", envvar="LOG_LEVEL", help="Logging level"),
) -> None:
    """A service to collect and monitor heartbeats."""
    try:
        settings = load_settings(config).with_overrides(
            db_path=db_path,
            public_addr=public_addr,
            admin_addr=admin_addr,
            freshness_model=model,
            log_level=log_level,
        )
    except ConfigError as e:
        _fail(f"Configuration error: {e}", code=2)

    _setup_logging(settings.log_level)
    ctx.obj = settings


@app.command()
def version() -> None:
    """Show the installed version."""
    console.print(f"heartbeat-collector {__version__}")


@app.command()
def serve(ctx: typer.Context) -> None:
    """Run the public (read-only) and admin (write) listeners."""
    from heartbeat_collector.runner import serve as run_server

    settings = _settings(ctx)
    console.print(
        f"[bold cyan]{settings.app_name}[/bold cyan] "
        f"public [green]{settings.public_addr}[/green] "
        f"admin [green]{settings.admin_addr}[/green] "
        f"db [dim]{settings.db_path}[/dim]"
    )
    try:
        run_server(settings)
    except (ConfigError, StorageError) as e:
        _fail(str(e), code=2)


@app.command()
def register(
    ctx: typer.Context,
    heartbeat_id: str = typer.Argument(..., help="Heartbeat identifier"),
    ttl: str = typer.Option(None, "--ttl", "-t", help="Validity window, e.g. 30, 30s, 5m"),
    expiry: str = typer.Option(None, "--expiry", "-e", help="ISO-8601 expiry instant"),
    label: str = typer.Option(None, "--label", "-l", help="Human-readable label"),
    meta: list[str] = typer.Option(
        None, "--meta", help="Metadata entry as key=value (repeatable)"),
) -> None:
    """Register a heartbeat, replacing any previous one."""
    metadata = {}
    for entry in meta or []:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {entry!r}", param_hint="--meta")
        metadata[key] = value

    service = _open_service(_settings(ctx))
    try:
        service.register(heartbeat_id, RegisterInput(
            expiry=expiry, ttl=ttl, label=label, metadata=metadata or None,
        ))
    except HeartbeatValidationError as e:
        _fail(f"Invalid {e.field}: {e.message}", code=2)
    except StorageError as e:
        _fail(f"Storage error: {e}")

    console.print(f"[green]✓ Registered {heartbeat_id}[/green]")


@app.command()
def check(
    ctx: typer.Context,
    heartbeat_id: str = typer.Argument(..., help="Heartbeat identifier"),
    ttl: str = typer.Option(None, "--ttl", "-t", help="Validity window (implicit model)"),
    json_output: bool = typer.Option(False, "--json", help="Print the heartbeat as JSON"),
) -> None:
    """Check whether a heartbeat is alive. Exits 1 if not."""
    service = _open_service(_settings(ctx))
    try:
        view = service.evaluate(heartbeat_id, ttl=ttl)
    except HeartbeatNotFound:
        _fail("heartbeat not found")
    except HeartbeatValidationError as e:
        _fail(f"Invalid {e.field}: {e.message}", code=2)
    except StorageError as e:
        _fail(f"Storage error: {e}")

    if json_output:
        console.print_json(json.dumps(view.to_dict()))
        return

    console.print(f"[green]● {view.id} alive[/green]")
    console.print(f"  Last seen: {view.last_seen.isoformat()}")
    console.print(f"  Expires:   {view.expiry.isoformat()}")
    if view.label:
        console.print(f"  Label:     {view.label}")
    for key, value in view.metadata.items():
        console.print(f"  {key}: {value}")


@app.command()
def purge(
    ctx: typer.Context,
    heartbeat_id: str = typer.Argument(..., help="Heartbeat identifier"),
) -> None:
    """Delete a stored heartbeat."""
    service = _open_service(_settings(ctx))
    try:
        service.purge(heartbeat_id)
    except HeartbeatNotFound:
        _fail("heartbeat not found")
    except HeartbeatValidationError as e:
        _fail(f"Invalid {e.field}: {e.message}", code=2)
    except StorageError as e:
        _fail(f"Storage error: {e}")

    console.print(f"[green]✓ Purged {heartbeat_id}[/green]")


@app.command("list")
def list_heartbeats(ctx: typer.Context) -> None:
    """List every stored heartbeat, expired ones included."""
    service = _open_service(_settings(ctx))
    try:
        listings = service.list_heartbeats()
    except StorageError as e:
        _fail(f"Storage error: {e}")

    if not listings:
        console.print("[yellow]No heartbeats stored.[/yellow]")
        return

    table = Table(title="Heartbeats")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Last seen")
    table.add_column("Expiry")
    table.add_column("Status")
    for item in listings:
        record = item.record
        if item.alive is None:
            status = "[dim]n/a[/dim]"
        elif item.alive:
            status = "[green]alive[/green]"
        else:
            status = "[red]expired[/red]"
        table.add_row(
            record.id,
            record.label or "",
            record.last_seen.strftime("%Y-%m-%d %H:%M:%S"),
            record.expiry.strftime("%Y-%m-%d %H:%M:%S") if record.expiry else "",
            status,
        )
    console.print(table)


if __name__ == "__main__":
    app()
