"""
Command-line interface for freebusy-sync.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from freebusy_sync.config import Settings
from freebusy_sync.config import load_settings
from freebusy_sync.db import Database
from freebusy_sync.ledger import EventLedger
from freebusy_sync.migrations import LATEST_VERSION
from freebusy_sync.migrations import applied_migrations
from freebusy_sync.migrations import current_version
from freebusy_sync.migrations import ensure_schema
from freebusy_sync.migrations import migrate as run_migrations
from freebusy_sync.models import BIDIRECTIONAL
from freebusy_sync.models import DEFAULT_CONFIG
from freebusy_sync.models import STATUS_SUCCESS
from freebusy_sync.models import SYNC_DIRECTIONS
from freebusy_sync.models import CalendarSyncError
from freebusy_sync.models import PersistenceError
from freebusy_sync.models import ValidationError
from freebusy_sync.providers import ProviderRegistry
from freebusy_sync.providers import classify_identity
from freebusy_sync.runlog import RunLog
from freebusy_sync.store import ConfigurationStore
from freebusy_sync.sync import SyncEngine

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Mirror busy time between Microsoft 365 and Google calendars.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    database: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    database: Annotated[
        Path | None,
        typer.Option("--database", help="SQLite database path (overrides DATABASE_PATH)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.database = database
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool, log_dir: Path | None = None) -> None:
    handlers: list[logging.Handler] = [
        RichHandler(rich_tracebacks=True, show_path=False, console=console)
    ]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"sync_{date.today().isoformat()}.log")
        file_handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def _settings() -> Settings:
    """Load settings once per command; invalid settings are a fatal startup error."""
    try:
        settings = load_settings(state.config_path, database_override=state.database)
    except CalendarSyncError as e:
        console.print(f"[bold red]Configuration error:[/] {e}")
        raise typer.Exit(1) from None
    if settings.log_dir is not None:
        _setup_logging(state.verbose, settings.log_dir)
    return settings


@contextmanager
def _open_database(settings: Settings):
    """Yield a migrated Database, exiting 1 when it cannot be opened."""
    try:
        with Database(settings.database_path) as db:
            ensure_schema(db)
            yield db
    except PersistenceError as e:
        console.print(f"[bold red]Database error:[/] {e}")
        raise typer.Exit(1) from None


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/] {message}")
    raise typer.Exit(1)


def _counts_grid(rows: list[tuple[str, int]]) -> Table:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column(justify="right")
    for label, value in rows:
        grid.add_row(label, str(value))
    return grid


_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]
_CONFIG_ID = Annotated[int, typer.Argument(help="Sync configuration id")]


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    config_id: Annotated[
        int | None,
        typer.Option("--config-id", help="Sync only this configuration (even if inactive)"),
    ] = None,
    dry_run: _DRY_RUN = False,
) -> None:
    """Mirror busy time for every active configuration.

    Intended to run from cron. A failing configuration is recorded in the run
    log and does not stop the others.
    """
    from freebusy_sync.preflight import run_preflight_checks

    settings = _settings()
    providers = ProviderRegistry.from_settings(settings)
    if not run_preflight_checks(settings, providers, console):
        raise typer.Exit(1)

    with _open_database(settings) as db:
        engine = SyncEngine(db, providers, settings, dry_run=dry_run)
        if dry_run:
            console.print(Text("DRY RUN: nothing will be written", style="bold magenta"))

        # -- Single configuration --------------------------------------------
        if config_id is not None:
            config = engine.store.get_configuration(config_id)
            if config is None:
                _fail(f"No sync configuration with id {config_id}")
            try:
                stats = engine.sync_configuration(config)
            except CalendarSyncError as e:
                console.print(f"[bold red]Sync failed:[/] {e}")
                raise typer.Exit(1) from None
            except Exception as e:
                console.print_exception()
                console.print(f"[bold red]Unexpected error:[/] {e}")
                raise typer.Exit(1) from e
            rows = [
                ("Processed", stats.processed),
                ("Created", stats.created),
                ("Updated", stats.updated),
                ("Update skipped", stats.update_skipped),
                ("Deleted", stats.deleted),
            ]
            title = f"[bold]Configuration {config_id}[/bold]"
            console.print(Panel(_counts_grid(rows), title=title, expand=False))
            return

        # -- All active configurations ---------------------------------------
        try:
            results = engine.sync_all()
        except PersistenceError as e:
            console.print(f"[bold red]Database error:[/] {e}")
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/]")
            raise typer.Exit(130) from None

    if not results:
        console.print("[yellow]No active sync configurations.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Config", justify="right")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Error", overflow="fold")
    for result in results:
        ok = result.status == STATUS_SUCCESS
        table.add_row(
            str(result.config_id),
            Text(result.status, style="green" if ok else "bold red"),
            str(result.stats.processed),
            str(result.stats.created),
            str(result.stats.updated),
            str(result.stats.deleted),
            result.error or "",
        )
    console.print(Panel(table, title="[bold]Results[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: migrate
# ---------------------------------------------------------------------------


@app.command()
def migrate(
    show_status: Annotated[
        bool, typer.Option("--status", help="List applied migrations instead of migrating")
    ] = False,
) -> None:
    """Apply pending schema migrations."""
    settings = _settings()
    try:
        with Database(settings.database_path) as db:
            if show_status:
                rows = applied_migrations(db)
                version = current_version(db)
            else:
                applied = run_migrations(db)
                version = current_version(db)
    except PersistenceError as e:
        console.print(f"[bold red]Migration failed:[/] {e}")
        raise typer.Exit(1) from None

    if not show_status:
        if applied:
            for migration in applied:
                console.print(f"  [green]✓[/] {migration.version}  {migration.description}")
        console.print(f"Database version: [cyan]{version}[/] (latest {LATEST_VERSION})")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Version")
    table.add_column("Description")
    table.add_column("Executed at")
    for row in rows:
        table.add_row(row["version"], row["description"] or "", row["executed_at"])
    title = f"[bold]Schema version {version}[/bold]"
    console.print(Panel(table, title=title, expand=False))


# ---------------------------------------------------------------------------
# Subcommands: users and configurations
# ---------------------------------------------------------------------------


@app.command("add-user")
def add_user(
    email: Annotated[str, typer.Argument(help="User email address")],
    display_name: Annotated[str, typer.Argument(help="Display name")],
) -> None:
    """Register a user who owns sync configurations."""
    with _open_database(_settings()) as db:
        try:
            user_id = ConfigurationStore(db).add_user(email, display_name)
        except ValidationError as e:
            _fail(str(e))
    console.print(f"Added user [bold]{display_name}[/] <{email}> with id [cyan]{user_id}[/]")


@app.command()
def users() -> None:
    """List registered users."""
    with _open_database(_settings()) as db:
        rows = ConfigurationStore(db).list_users()

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("Email")
    table.add_column("Name")
    for user in rows:
        table.add_row(str(user.id), user.email, user.display_name)
    console.print(table)


@app.command("add-config")
def add_config(
    user_id: Annotated[int, typer.Argument(help="Owning user id")],
    source: Annotated[str, typer.Argument(help="Source calendar (email or Google calendar id)")],
    target: Annotated[str, typer.Argument(help="Target calendar (email or Google calendar id)")],
    direction: Annotated[
        str,
        typer.Option(
            "--direction", "-d", help=f"One of: {', '.join(SYNC_DIRECTIONS)}"
        ),
    ] = BIDIRECTIONAL,
    frequency: Annotated[
        int, typer.Option("--frequency", help="Sync frequency in minutes (5-1440)")
    ] = 15,
    source_type: Annotated[
        str | None, typer.Option("--source-type", help="google or microsoft (default: detect)")
    ] = None,
    target_type: Annotated[
        str | None, typer.Option("--target-type", help="google or microsoft (default: detect)")
    ] = None,
) -> None:
    """Pair two calendars for syncing."""
    with _open_database(_settings()) as db:
        try:
            config_id = ConfigurationStore(db).add_configuration(
                user_id,
                source,
                target,
                source_type or classify_identity(source),
                target_type or classify_identity(target),
                direction,
                frequency,
            )
        except ValidationError as e:
            _fail(str(e))
    console.print(f"Added sync configuration [cyan]{config_id}[/]: {source} → {target}")


def _set_active(config_id: int, active: bool) -> None:
    with _open_database(_settings()) as db:
        try:
            ConfigurationStore(db).set_active(config_id, active)
        except ValidationError as e:
            _fail(str(e))
    word = "enabled" if active else "disabled"
    console.print(f"Configuration [cyan]{config_id}[/] {word}")


@app.command()
def enable(config_id: _CONFIG_ID) -> None:
    """Activate a sync configuration."""
    _set_active(config_id, True)


@app.command()
def disable(config_id: _CONFIG_ID) -> None:
    """Deactivate a sync configuration."""
    _set_active(config_id, False)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show configurations, tracked mirrors and recent runs."""
    settings = _settings()

    info = Text()
    info.append("  Config:   ", style="bold")
    info.append(str(state.config_path) + " ")
    exists = state.config_path.exists()
    info.append("✓" if exists else "(not found)", style="green" if exists else "yellow")
    info.append("\n  Database: ", style="bold")
    info.append(str(settings.database_path))
    info.append("\n  Timezone: ", style="bold")
    info.append(settings.default_timezone)
    info.append("\n  Window:   ", style="bold")
    info.append(f"{settings.max_sync_range_days} days")

    with _open_database(settings) as db:
        configs = ConfigurationStore(db).list_configurations_with_users()
        tracked = EventLedger(db).count_by_configuration()
        runs = RunLog(db).recent(10)
        version = current_version(db)

    info.append("\n  Schema:   ", style="bold")
    info.append(version)
    console.print(Panel(info, title="[bold]freebusy-sync status[/bold]"))

    if not configs:
        console.print("[yellow]No sync configurations yet. Add one with[/] [cyan]add-config[/]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("User")
    table.add_column("Source → Target", overflow="fold")
    table.add_column("Direction")
    table.add_column("Active")
    table.add_column("Tracked", justify="right")
    table.add_column("Last sync")
    for row in configs:
        count = sum(n for (cid, _), n in tracked.items() if cid == row["id"])
        active = bool(row["is_active"])
        table.add_row(
            str(row["id"]),
            row["display_name"],
            f"{row['source_email']} ({row['source_type']})\n"
            f"→ {row['target_email']} ({row['target_type']})",
            row["sync_direction"],
            Text("yes" if active else "no", style="green" if active else "dim"),
            str(count),
            row["last_sync_at"] or "never",
        )
    console.print(Panel(table, title="[bold]Configurations[/bold]", expand=False))

    if runs:
        log_table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
        log_table.add_column("Started")
        log_table.add_column("Config", justify="right")
        log_table.add_column("Status")
        log_table.add_column("P/C/U/D", justify="right")
        log_table.add_column("Error", overflow="fold")
        for run in runs:
            ok = run["status"] == STATUS_SUCCESS
            log_table.add_row(
                run["started_at"],
                str(run["sync_config_id"]),
                Text(run["status"], style="green" if ok else "bold red"),
                f"{run['events_processed']}/{run['events_created']}/"
                f"{run['events_updated']}/{run['events_deleted']}",
                run["error_message"] or "",
            )
        console.print(Panel(log_table, title="[bold]Recent runs[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: clear
# ---------------------------------------------------------------------------


@app.command()
def clear(config_id: _CONFIG_ID, dry_run: _DRY_RUN = False, yes: _YES = False) -> None:
    """Delete every mirror this configuration created and forget them.

    Operator cleanup only: the next sync recreates mirrors for events still
    in the window.
    """
    settings = _settings()
    providers = ProviderRegistry.from_settings(settings)

    with _open_database(settings) as db:
        engine = SyncEngine(db, providers, settings, dry_run=dry_run)
        config = engine.store.get_configuration(config_id)
        if config is None:
            _fail(f"No sync configuration with id {config_id}")
        tracked = len(engine.ledger.entries_for(config_id))
        if not tracked:
            console.print("[yellow]Nothing to clear.[/]")
            return

        console.print(
            f"Configuration [cyan]{config_id}[/] has [bold]{tracked}[/] tracked mirror(s)."
        )
        if not yes and not dry_run:
            typer.confirm("Delete them from their calendars?", abort=True)

        try:
            removed, errors = engine.clear_configuration(config)
        except CalendarSyncError as e:
            console.print(f"[bold red]Clear failed:[/] {e}")
            raise typer.Exit(1) from None

    label = "Would delete" if dry_run else "Deleted"
    rows = [(label, removed), ("Errors", errors)]
    console.print(Panel(_counts_grid(rows), title="[bold]Results[/bold]", expand=False))
    if errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: verify
# ---------------------------------------------------------------------------


@app.command()
def verify(
    identity: Annotated[str, typer.Argument(help="Calendar email or Google calendar id")],
    kind: Annotated[
        str | None, typer.Option("--type", help="google or microsoft (default: detect)")
    ] = None,
) -> None:
    """Check which provider an identity maps to and that it is reachable."""
    settings = _settings()
    providers = ProviderRegistry.from_settings(settings)
    detected = classify_identity(identity)
    kind = kind or detected
    note = "" if kind == detected else f" (detected {detected})"
    console.print(f"[bold]{identity}[/] → [cyan]{kind}[/]{note}")

    try:
        reachable = providers.get(kind).validate_calendar(identity)
    except CalendarSyncError as e:
        _fail(str(e))
    if not reachable:
        _fail(f"Calendar {identity} is not reachable with the configured credentials")
    console.print("[green]✓ Calendar reachable[/]")


# ---------------------------------------------------------------------------
# Subcommand: web
# ---------------------------------------------------------------------------


@app.command()
def web(
    host: Annotated[str | None, typer.Option("--host", help="Bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Listen port")] = None,
) -> None:
    """Serve the operator web form."""
    from freebusy_sync.web import create_app

    settings = _settings()
    try:
        flask_app = create_app(settings)
    except PersistenceError as e:
        _fail(str(e))
    flask_app.run(host=host or settings.web_host, port=port or settings.web_port)


def main() -> None:
    app()
