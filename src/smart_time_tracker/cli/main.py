"""CLI commands for Smart Time Tracker using Typer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from smart_time_tracker import __version__
from smart_time_tracker.core.config import Config, get_config
from smart_time_tracker.core.errors import TrackerError
from smart_time_tracker.storage.client_state import ClientState
from smart_time_tracker.storage.database import Database, init_database
from smart_time_tracker.storage.log_queue import LogQueue

T = TypeVar("T")

# Initialize Typer app
app = typer.Typer(
    name="smart-time-tracker",
    help="Track time spent per website and sync it to your dashboard.",
    add_completion=False,
)

console = Console()


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Reduce noise from external libraries
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _with_client_state(config: Config, action: Callable[[Database], Awaitable[T]]) -> T:
    """Run ``action`` against the client database outside the daemon."""

    async def run() -> T:
        db = await init_database(config.db_path)
        try:
            return await action(db)
        finally:
            await db.close()

    return asyncio.run(run())


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"smart-time-tracker {__version__}")


@app.command()
def start(
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Run the tracking client in the foreground."""
    config = get_config()

    from smart_time_tracker.core.orchestrator import Orchestrator, run_daemon

    pid = Orchestrator.get_daemon_pid(config)
    if pid is not None:
        console.print(f"[yellow]Client already running (PID: {pid})[/yellow]")
        raise typer.Exit(1)

    setup_logging(log_level, config.log_dir / "client.log")

    console.print("[green]Starting Smart Time Tracker...[/green]")
    console.print("Press Ctrl+C to stop\n")

    try:
        asyncio.run(run_daemon(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Host to bind to"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level"),
) -> None:
    """Run the ingestion server."""
    from smart_time_tracker.server.app import run_server

    setup_logging(log_level)
    run_server(host=host, port=port)


@app.command()
def pair(code: str = typer.Argument(..., help="6-digit code shown on the dashboard")) -> None:
    """Pair this client with your account."""
    config = get_config()

    from smart_time_tracker.sync.pairing import PairingClient

    async def action(db: Database):
        client = PairingClient(config.sync, ClientState(db))
        return await client.finish(code)

    try:
        result = _with_client_state(config, action)
    except TrackerError as e:
        _fail(f"Pairing failed: {e}")

    days = result.token_expires_in_seconds // 86400
    console.print(f"[green]Paired as {result.user_id}[/green] (token valid for {days} days)")


@app.command("set-user")
def set_user(user_id: str = typer.Argument(..., help="Legacy user id (at least 6 characters)")) -> None:
    """Store a legacy user id used when the client is not paired."""
    config = get_config()

    from smart_time_tracker.sync.pairing import PairingClient

    async def action(db: Database) -> str:
        return await PairingClient(config.sync, ClientState(db)).set_user_id(user_id)

    try:
        value = _with_client_state(config, action)
    except TrackerError as e:
        _fail(str(e))

    console.print(f"[green]User ID saved: {value}[/green]")


@app.command()
def logout() -> None:
    """Forget the stored token and user id."""
    config = get_config()

    async def action(db: Database) -> None:
        await ClientState(db).clear_credentials()

    _with_client_state(config, action)
    console.print("[green]Signed out[/green]")


@app.command()
def status() -> None:
    """Show queue, session and credential status."""
    config = get_config()

    from smart_time_tracker.core.orchestrator import Orchestrator

    async def action(db: Database) -> dict[str, Any]:
        state = ClientState(db)
        return {
            "pending": await LogQueue(db).pending_count(),
            "session": await state.get_active_session(),
            "token": await state.get_token(),
            "token_user_id": await state.get_token_user_id(),
            "user_id": await state.get_user_id(),
        }

    info = _with_client_state(config, action)
    pid = Orchestrator.get_daemon_pid(config)

    if info["token"]:
        identity = f"token (user {info['token_user_id'] or 'unknown'})"
    elif info["user_id"]:
        identity = f"legacy user id {info['user_id']}"
    else:
        identity = "[yellow]not paired[/yellow]"

    session = info["session"]

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    table.add_row("Client", f"[green bold]RUNNING[/green bold] (PID {pid})" if pid else "[red]STOPPED[/red]")
    table.add_row("Tracking", session.domain if session else "-")
    table.add_row("Pending logs", str(info["pending"]))
    table.add_row("Identity", identity)
    table.add_row("Server", config.sync.api_url)
    table.add_row("Database", str(config.db_path))

    console.print(Panel(table, title="Smart Time Tracker Status", border_style="green" if pid else "red"))


@app.command()
def sync() -> None:
    """Upload pending logs now."""
    config = get_config()

    from smart_time_tracker.sync.cloud_sync import SyncEngine, SyncOutcome

    async def action(db: Database):
        engine = SyncEngine(config.sync, LogQueue(db), ClientState(db))
        return await engine.sync_now()

    result = _with_client_state(config, action)

    if result.outcome == SyncOutcome.SYNCED:
        console.print(f"[green]Synced {result.count} logs[/green]")
    elif result.outcome == SyncOutcome.EMPTY:
        console.print("Nothing to sync")
    elif result.outcome == SyncOutcome.NO_CREDENTIALS:
        _fail("Not paired: run 'smart-time-tracker pair CODE' first")
    else:
        _fail(f"Sync failed: {result.error or result.outcome.value}")


@app.command()
def stats(
    top: int = typer.Option(3, "--top", "-n", help="Number of domains to show"),
) -> None:
    """Show the domains you spent the most time on."""
    config = get_config()

    from smart_time_tracker.sync.stats import fetch_logs, format_duration, top_domains

    async def action(db: Database) -> str:
        state = ClientState(db)
        return await state.get_token_user_id() or await state.get_user_id()

    user_id = _with_client_state(config, action)
    if not user_id:
        _fail("No user id stored: pair or run 'smart-time-tracker set-user' first")

    try:
        logs = asyncio.run(fetch_logs(config.sync.api_url, user_id))
    except TrackerError as e:
        _fail(str(e))

    totals = top_domains(logs, limit=top)
    if not totals:
        console.print("[yellow]No data yet[/yellow]")
        return

    table = Table(title="Top Sites", show_header=True, header_style="bold cyan")
    table.add_column("Domain")
    table.add_column("Time", justify="right")
    table.add_column("Share", justify="right")

    for total in totals:
        table.add_row(total.domain, format_duration(total.seconds), f"{total.percent}%")

    console.print(table)


@app.command()
def config_show() -> None:
    """Show current configuration."""
    config = get_config()

    table = Table(title="Smart Time Tracker Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting")
    table.add_column("Value")

    # Paths
    table.add_row("[bold]Paths[/bold]", "")
    table.add_row("  Data Directory", str(config.data_dir))
    table.add_row("  Log Directory", str(config.log_dir))
    table.add_row("  Config File", str(config.config_file))
    table.add_row("  Database", str(config.db_path))

    # Tracking
    table.add_row("[bold]Tracking[/bold]", "")
    table.add_row("  Minimum Session", f"{config.tracking.min_session_seconds}s")
    table.add_row("  Poll Interval", f"{config.tracking.poll_interval_seconds}s")
    table.add_row("  Idle Threshold", f"{config.tracking.idle_threshold_seconds}s")

    # Sync
    table.add_row("[bold]Sync[/bold]", "")
    table.add_row("  Enabled", str(config.sync.enabled))
    table.add_row("  Server", config.sync.api_url)
    table.add_row("  Interval", f"{config.sync.interval_seconds}s")

    # Server
    table.add_row("[bold]Server[/bold]", "")
    table.add_row("  URL", f"http://{config.server.host}:{config.server.port}")
    table.add_row("  Database", config.server.database_url)
    table.add_row("  Legacy user_id", str(config.server.allow_legacy_identity))

    console.print(table)


@app.command()
def config_init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config file"),
) -> None:
    """Write the current configuration to the config file."""
    config = get_config()

    if config.config_file.exists() and not force:
        _fail(f"Config file already exists: {config.config_file} (use --force to overwrite)")

    config.save()
    console.print(f"[green]Configuration written to {config.config_file}[/green]")


if __name__ == "__main__":
    app()
