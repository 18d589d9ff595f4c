"""Command-line interface for focusdebt."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .config import (
    ConfigError,
    TrackerSettings,
    load_settings,
    update_setting,
    write_default_config,
)
from .db import PersistenceError, SqliteStore
from .models import Session, normalize_domain
from .paths import get_config_path, get_db_path, get_log_path, get_pid_path

app = typer.Typer(help="Track focus, distraction and context switching.")
focusapp_app = typer.Typer(help="Manage applications that count as focus work.")
focussite_app = typer.Typer(help="Manage sites that count as focus work.")
ignore_app = typer.Typer(help="Manage applications that are not tracked at all.")
sessions_app = typer.Typer(help="Browse recorded sessions.")
config_app = typer.Typer(help="Inspect and edit the configuration file.")
database_app = typer.Typer(help="Database maintenance.")
app.add_typer(focusapp_app, name="focusapp")
app.add_typer(focussite_app, name="focussite")
app.add_typer(ignore_app, name="ignore")
app.add_typer(sessions_app, name="sessions")
app.add_typer(config_app, name="config")
app.add_typer(database_app, name="database")

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass(slots=True)
class CliContext:
    config_path: Path
    db_override: Optional[Path]
    verbose: bool = False
    _settings: Optional[TrackerSettings] = None

    @property
    def settings(self) -> TrackerSettings:
        if self._settings is None:
            try:
                self._settings = load_settings(self.config_path)
            except ConfigError as exc:
                _fail(f"Invalid configuration: {exc}")
        return self._settings

    @property
    def db_path(self) -> Path:
        return self.db_override or self.settings.database_path or get_db_path()

    def open_store(self) -> SqliteStore:
        try:
            return SqliteStore(self.db_path)
        except PersistenceError as exc:
            _fail(str(exc))


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.callback(no_args_is_help=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", path_type=Path, help="Location of the TOML configuration file."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the focusdebt SQLite database."
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    ctx.obj = CliContext(
        config_path=config_path or get_config_path(), db_override=db_path, verbose=verbose
    )


def _load_session(store: SqliteStore, name: Optional[str]) -> Session:
    session = store.load_session(name) if name else store.latest_session()
    if session is None:
        _fail(f"No session named {name!r}." if name else "No sessions recorded yet.")
    return session


def _print_summary(ctx_obj: CliContext, session: Session) -> None:
    from .aggregator import summarize_session
    from .reporting import SummaryPrinter

    settings = ctx_obj.settings
    summary = summarize_session(
        session,
        deep_focus_threshold=settings.deep_focus_threshold,
        max_run_gap=settings.deep_focus_gap,
    )
    SummaryPrinter().print_session_summary(session, summary)


def _prompt_session_name(store: SqliteStore) -> str:
    while True:
        name = typer.prompt("Session name").strip()
        if not name:
            typer.echo("Session name cannot be empty. Please try again.")
            continue
        if store.session_name_exists(name):
            typer.echo(f"Session name {name!r} already exists. Please choose a different name.")
            continue
        return name


@app.command()
def start(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of this focus session."),
    detach: bool = typer.Option(
        False, "--detach", "-d", help="Keep tracking in the background after returning."
    ),
) -> None:
    """Start a tracking session; runs until stopped."""
    from .coordinator import Coordinator, CoordinatorError
    from .daemon import run_session, running_daemon_pid, spawn_detached, write_pid

    obj: CliContext = ctx.obj
    settings = obj.settings
    if not obj.verbose:
        logging.getLogger().setLevel(settings.log_level.upper())
    pid_path = get_pid_path()
    running = running_daemon_pid(pid_path)
    if running is not None and running != os.getpid():
        _fail(f"A tracking session is already running (PID {running}). Use 'focusdebt stop' first.")

    store = obj.open_store()
    try:
        if name is None:
            name = _prompt_session_name(store)
        else:
            name = name.strip()
            if not name:
                _fail("Session name cannot be empty.")
            if store.session_name_exists(name):
                _fail(f"Session name {name!r} already exists.")

        if detach:
            args = ["--config", str(obj.config_path), "--db", str(obj.db_path)]
            args += ["start", "--name", name]
            pid = spawn_detached(args, get_log_path())
            write_pid(pid_path, pid)
            typer.echo(f"Tracking session {name!r} in the background (PID {pid}).")
            typer.echo("Use 'focusdebt stop' to end the session and view its summary.")
            return

        focus_set = settings.focus_set(
            store.list_policy_entries("focus_apps"),
            store.list_policy_entries("focus_sites"),
            store.list_policy_entries("ignored_apps"),
        )
        coordinator = Coordinator(store, settings, focus_set)
        typer.echo(f"Tracking session {name!r}. Press Ctrl+C or run 'focusdebt stop' to finish.")
        try:
            session = run_session(coordinator, name, pid_path)
        except (CoordinatorError, ConfigError) as exc:
            _fail(f"Could not start tracking: {exc}")
        except PersistenceError as exc:
            if coordinator.session_id is None:
                _fail(f"Could not start tracking: {exc}")
            logger.warning("%s", exc)
            if not coordinator.retry_flush():
                _fail("Could not save the session; recent activity was not persisted.")
            session = coordinator.snapshot()
        if session is not None:
            _print_summary(obj, session)
    finally:
        store.close()


@app.command()
def stop(
    ctx: typer.Context,
    timeout: float = typer.Option(10.0, "--timeout", min=1.0, help="Seconds to wait for the daemon."),
) -> None:
    """Stop the background session and show its summary."""
    from .daemon import request_stop

    if not request_stop(get_pid_path(), timeout=timeout):
        _fail("No tracking session is running.")
    with ctx.obj.open_store() as store:
        session = store.latest_session()
    if session is not None:
        _print_summary(ctx.obj, session)


@app.command()
def status(ctx: typer.Context) -> None:
    """Report whether a tracking session is running."""
    from .daemon import running_daemon_pid

    pid = running_daemon_pid(get_pid_path())
    if pid is None:
        typer.echo("No tracking session is running.")
        return
    with ctx.obj.open_store() as store:
        latest = store.list_sessions()[:1]
    label = f" ({latest[0].name!r})" if latest and latest[0].end is None else ""
    typer.echo(f"Tracking session running{label}, PID {pid}.")


@app.command()
def stats(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Session name. Defaults to the latest session."),
) -> None:
    """Print the summary of a session."""
    with ctx.obj.open_store() as store:
        session = _load_session(store, name)
    _print_summary(ctx.obj, session)


@sessions_app.command("list")
def sessions_list(ctx: typer.Context) -> None:
    """List recorded sessions, newest first."""
    from .reporting import SummaryPrinter

    with ctx.obj.open_store() as store:
        sessions = store.list_sessions()
    SummaryPrinter().print_session_list(sessions)


@sessions_app.command("show")
def sessions_show(ctx: typer.Context, name: str = typer.Argument(..., help="Session name.")) -> None:
    """Show the summary of one session."""
    with ctx.obj.open_store() as store:
        session = _load_session(store, name)
    _print_summary(ctx.obj, session)


@app.command()
def export(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Session name. Defaults to the latest session."),
    fmt: str = typer.Option("json", "--format", "-f", help="Export format: json, csv or html."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", path_type=Path, help="Output file."),
) -> None:
    """Export a session's intervals, switches and summary."""
    from .aggregator import summarize_session
    from .export import EXPORT_FORMATS, export_session

    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        _fail(f"Unsupported format {fmt!r}; choose one of {', '.join(EXPORT_FORMATS)}.")
    with ctx.obj.open_store() as store:
        session = _load_session(store, name)
    settings = ctx.obj.settings
    summary = summarize_session(
        session,
        deep_focus_threshold=settings.deep_focus_threshold,
        max_run_gap=settings.deep_focus_gap,
    )
    safe_name = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in session.name)
    path = export_session(session, summary, output or Path(f"focusdebt-{safe_name}.{fmt}"), fmt)
    typer.echo(f"Exported session {session.name!r} to {path}")


@app.command()
def share(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Session name. Defaults to the latest session."),
) -> None:
    """Print a short, shareable summary of a session."""
    from .aggregator import summarize_session
    from .reporting import render_share_report

    with ctx.obj.open_store() as store:
        session = _load_session(store, name)
    settings = ctx.obj.settings
    summary = summarize_session(
        session,
        deep_focus_threshold=settings.deep_focus_threshold,
        max_run_gap=settings.deep_focus_gap,
    )
    typer.echo(render_share_report(session, summary))


@focusapp_app.command("add")
def focusapp_add(ctx: typer.Context, name: str = typer.Argument(..., help="Application name.")) -> None:
    """Add a focus application, matching against running applications."""
    from .apps import resolve_app_name, running_apps

    resolved = resolve_app_name(name, running_apps()) or name.strip()
    with ctx.obj.open_store() as store:
        added = store.add_policy_entry("focus_apps", resolved)
    typer.echo(f"Added focus app: {resolved}" if added else f"{resolved} is already a focus app.")


@focusapp_app.command("remove")
def focusapp_remove(ctx: typer.Context, name: str = typer.Argument(..., help="Application name.")) -> None:
    """Remove a focus application."""
    with ctx.obj.open_store() as store:
        removed = store.remove_policy_entry("focus_apps", name.strip())
    if not removed:
        _fail(f"{name} is not a focus app added from the command line.")
    typer.echo(f"Removed focus app: {name}")


@focusapp_app.command("list")
def focusapp_list(ctx: typer.Context) -> None:
    """List focus applications from the config file and the command line."""
    _print_policy(ctx.obj, "focus_apps", ctx.obj.settings.focus_apps, "focus apps")


@focusapp_app.command("suggest")
def focusapp_suggest() -> None:
    """List running GUI applications that could be added as focus apps."""
    from .apps import running_apps

    apps = running_apps()
    if not apps:
        typer.echo("No running GUI applications detected.")
        return
    typer.echo("Currently running GUI applications:")
    for index, (friendly, process) in enumerate(apps, start=1):
        typer.echo(f"{index}. {friendly} ({process})")
    typer.echo("Use 'focusdebt focusapp add \"App Name\"' to add one.")


@focussite_app.command("add")
def focussite_add(ctx: typer.Context, domain: str = typer.Argument(..., help="Site domain.")) -> None:
    """Add a focus site (subdomains are included)."""
    normalized = normalize_domain(domain)
    if not normalized:
        _fail("Domain cannot be empty.")
    with ctx.obj.open_store() as store:
        added = store.add_policy_entry("focus_sites", normalized)
    typer.echo(f"Added focus site: {normalized}" if added else f"{normalized} is already a focus site.")


@focussite_app.command("remove")
def focussite_remove(ctx: typer.Context, domain: str = typer.Argument(..., help="Site domain.")) -> None:
    """Remove a focus site."""
    normalized = normalize_domain(domain)
    with ctx.obj.open_store() as store:
        removed = store.remove_policy_entry("focus_sites", normalized)
    if not removed:
        _fail(f"{normalized} is not a focus site added from the command line.")
    typer.echo(f"Removed focus site: {normalized}")


@focussite_app.command("list")
def focussite_list(ctx: typer.Context) -> None:
    """List focus sites."""
    _print_policy(ctx.obj, "focus_sites", ctx.obj.settings.focus_domains, "focus sites")


@focussite_app.command("suggest")
def focussite_suggest(ctx: typer.Context) -> None:
    """List sites open in browser windows that could be added as focus sites."""
    from .apps import open_browser_sites
    from .probe import PlatformProbe, ProbeError

    probe = PlatformProbe(
        command_timeout=ctx.obj.settings.effective_probe_timeout.total_seconds()
    )
    try:
        sites = open_browser_sites(probe)
    except ProbeError as exc:
        logger.debug("Could not list browser windows: %s", exc)
        sites = []
    if not sites:
        typer.echo("No open browser tabs detected.")
        return
    typer.echo("Currently open browser tabs:")
    for index, (domain, title) in enumerate(sites, start=1):
        typer.echo(f"{index}. {domain}  {title}" if title else f"{index}. {domain}")
    typer.echo("Use 'focusdebt focussite add DOMAIN' to add one.")



@ignore_app.command("add")
def ignore_add(ctx: typer.Context, name: str = typer.Argument(..., help="Application name.")) -> None:
    """Stop tracking an application entirely."""
    with ctx.obj.open_store() as store:
        added = store.add_policy_entry("ignored_apps", name.strip())
    typer.echo(f"Ignoring app: {name}" if added else f"{name} is already ignored.")


@ignore_app.command("remove")
def ignore_remove(ctx: typer.Context, name: str = typer.Argument(..., help="Application name.")) -> None:
    """Track an ignored application again."""
    with ctx.obj.open_store() as store:
        removed = store.remove_policy_entry("ignored_apps", name.strip())
    if not removed:
        _fail(f"{name} is not an ignored app added from the command line.")
    typer.echo(f"No longer ignoring: {name}")


@ignore_app.command("list")
def ignore_list(ctx: typer.Context) -> None:
    """List ignored applications."""
    _print_policy(ctx.obj, "ignored_apps", ctx.obj.settings.ignored_apps, "ignored apps")


def _print_policy(obj: CliContext, kind: str, configured: list[str], label: str) -> None:
    with obj.open_store() as store:
        added = store.list_policy_entries(kind)
    if not configured and not added:
        typer.echo(f"No {label} configured.")
        return
    for value in configured:
        typer.echo(f"  {value}  (config file)")
    for value in added:
        typer.echo(f"  {value}")


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the effective settings."""
    typer.echo(f"# {ctx.obj.config_path}")
    for key, value in ctx.obj.settings.as_dict().items():
        typer.echo(f"{key} = {value!r}")


@config_app.command("path")
def config_path_command(ctx: typer.Context) -> None:
    """Print the configuration file location."""
    typer.echo(str(ctx.obj.config_path))


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a commented default configuration file."""
    try:
        path = write_default_config(ctx.obj.config_path, force=force)
    except ConfigError as exc:
        _fail(str(exc))
    typer.echo(f"Wrote default configuration to {path}")


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting name, e.g. tracking_interval_ms."),
    value: str = typer.Argument(..., help="New value; lists are comma separated."),
) -> None:
    """Change one setting in the configuration file."""
    try:
        update_setting(ctx.obj.config_path, key, value)
    except ConfigError as exc:
        _fail(f"Configuration not changed: {exc}")
    typer.echo(f"Configuration updated: {key} = {value}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Restore the default configuration file."""
    path = write_default_config(ctx.obj.config_path, force=True)
    typer.echo(f"Configuration reset to defaults in {path}")



@database_app.command("clear")
def database_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete all recorded sessions."""
    if not yes:
        typer.confirm("Delete all recorded sessions?", abort=True)
    with ctx.obj.open_store() as store:
        store.clear_all()
    typer.echo("Database cleared.")


@database_app.command("cleanup")
def database_cleanup(ctx: typer.Context) -> None:
    """Remove sessions that were never closed and recorded nothing."""
    from .daemon import running_daemon_pid

    if running_daemon_pid(get_pid_path()) is not None:
        _fail("Stop the running session before cleaning up the database.")
    with ctx.obj.open_store() as store:
        deleted = store.cleanup()
    typer.echo(f"Cleaned up {deleted} empty session(s).")


@database_app.command("optimize")
def database_optimize(ctx: typer.Context) -> None:
    """Compact the database file."""
    with ctx.obj.open_store() as store:
        store.vacuum()
    typer.echo("Database optimized.")


@app.command()
def debug(
    attempts: int = typer.Option(3, "--attempts", min=1, max=20, help="Number of probe attempts."),
) -> None:
    """Check which window detection strategies work on this system."""
    from .normalization import build_sample
    from .probe import PlatformProbe, ProbeError

    probe = PlatformProbe()
    for strategy in probe.strategies:
        available = strategy.is_available()
        typer.echo(f"{strategy.name:<14} {'available' if available else 'unavailable'}")
        if not available:
            continue
        try:
            raw = strategy.query(probe.command_timeout)
        except ProbeError as exc:
            typer.echo(f"    failed: {exc}")
        else:
            typer.echo(f"    {raw.app_name} - {raw.window_title}")

    for attempt in range(1, attempts + 1):
        try:
            sample = build_sample(probe.sample(), datetime.now())
        except ProbeError as exc:
            typer.echo(f"Attempt {attempt}: no window detected ({exc})")
        else:
            domain = f" [{sample.domain}]" if sample.domain else ""
            typer.echo(f"Attempt {attempt}: {sample.app_name} - {sample.window_title}{domain}")
        if attempt < attempts:
            time.sleep(1.0)


@app.command()
def web(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the dashboard."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the dashboard."
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Automatically open the API page in your default browser.",
    ),
) -> None:
    """Start the local dashboard API."""
    from .server_runner import run_dashboard

    run_dashboard(
        host=host,
        port=port,
        db_path=ctx.obj.db_path,
        settings=ctx.obj.settings,
        open_browser=open_browser,
        log_level="debug" if ctx.obj.verbose else None,
    )
