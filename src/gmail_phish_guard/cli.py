"""CLI entry point for Gmail Phish Guard."""

from __future__ import annotations

import asyncio
import json

import click

from . import constants
from .auth import authorize_user, disconnect_user
from .constants import ALLOWED_SCAN_INTERVALS, HISTORY_LIMIT
from .coordinator import ScheduleCoordinator
from .display import (
    console,
    display_assessment,
    display_history,
    display_scan_record,
    display_settings,
    setup_logging,
)
from .errors import PhishGuardError
from .export import export_record
from .gmail_client import GmailMailProvider
from .models import RiskLevel
from .scorer import analyze, to_canonical
from .store import SqliteStore


def _open_store() -> SqliteStore:
    return SqliteStore(db_path=constants.STORE_DB_PATH)


def _build_coordinator(store: SqliteStore) -> ScheduleCoordinator:
    return ScheduleCoordinator(GmailMailProvider(), store, store)


def _run(coro):
    """Run a coroutine, turning pipeline errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except PhishGuardError as e:
        raise click.ClickException(f"{e} [{e.code}]") from e


@click.group()
@click.version_option(version="0.1.0", prog_name="gmail-phish-guard")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Gmail Phish Guard - score your inbox for phishing risk."""
    setup_logging(verbose)


@cli.command()
@click.argument("user_id")
def connect(user_id: str) -> None:
    """Connect a Gmail account for USER_ID and enable auto-scan."""
    try:
        authorize_user(user_id)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e

    store = _open_store()
    settings = _run(store.get_auto_scan_settings(user_id))
    console.print(f"[green]Gmail connected for {user_id}.[/green]")
    display_settings(user_id, settings)


@cli.command()
@click.argument("user_id")
def disconnect(user_id: str) -> None:
    """Remove the stored Gmail token for USER_ID."""
    if disconnect_user(user_id):
        console.print(f"[green]Gmail disconnected for {user_id}.[/green]")
    else:
        console.print(f"[yellow]{user_id} has no connected Gmail account.[/yellow]")


@cli.command()
@click.argument("user_id")
@click.option("-m", "--max-messages", default=10, type=int, help="Messages to scan (max 100).")
@click.option("-q", "--query", default="in:inbox", help="Gmail search query.")
def scan(user_id: str, max_messages: int, query: str) -> None:
    """Scan the newest messages of USER_ID now."""
    store = _open_store()
    coordinator = _build_coordinator(store)
    record = _run(coordinator.perform_on_demand_scan(user_id, max_messages=max_messages, query=query))
    display_scan_record(record, limit=max_messages)


@cli.command(name="analyze")
@click.argument("message_file", type=click.File("r"))
def analyze_cmd(message_file) -> None:
    """Analyze a message from a JSON file without storing it.

    The file holds either a Gmail API message (format=full) or plain
    fields: subject, sender, body, urls.
    """
    try:
        data = json.load(message_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise click.ClickException("Expected a JSON object.")

    message = to_canonical(data)
    display_assessment(analyze(message), subject=message.subject)


@cli.command()
@click.argument("user_id")
@click.option(
    "--level",
    type=click.Choice([level.value for level in RiskLevel], case_sensitive=False),
    default=None,
    help="Only show one risk level.",
)
@click.option("-n", "--limit", default=None, type=int, help="Maximum rows to show.")
def results(user_id: str, level: str | None, limit: int | None) -> None:
    """Show stored scan results for USER_ID."""
    store = _open_store()
    record = _run(store.get_scan_record(user_id))

    if record is None:
        raise click.ClickException(f"No scan results found for {user_id}. Run 'scan' first.")

    display_scan_record(record, level=RiskLevel(level.upper()) if level else None, limit=limit)


@cli.command()
@click.argument("user_id")
@click.option("-n", "--limit", default=HISTORY_LIMIT, type=int, help="Entries to show.")
def history(user_id: str, limit: int) -> None:
    """Show the scan history of USER_ID."""
    store = _open_store()
    entries = _run(store.get_scan_history(user_id, limit=limit))

    if not entries:
        console.print("[dim]No scan history found.[/dim]")
        return
    display_history(user_id, entries)


@cli.command(name="export")
@click.argument("user_id")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    help="Output format.",
)
@click.option("-o", "--output", required=True, help="Output file path.")
def export_cmd(user_id: str, fmt: str, output: str) -> None:
    """Export stored scan results of USER_ID to CSV or JSON."""
    store = _open_store()
    record = _run(store.get_scan_record(user_id))

    if record is None:
        raise click.ClickException(f"No scan results found for {user_id}. Run 'scan' first.")

    count = export_record(record, format=fmt, output_path=output)
    console.print(f"Exported {count} emails to {output}")


@cli.command()
def sweep() -> None:
    """Run one auto-scan sweep over all enabled users."""
    store = _open_store()
    _run(_build_coordinator(store).run_scheduled_sweep())
    console.print("[green]Sweep finished.[/green]")


@cli.command()
@click.argument("user_id")
def trigger(user_id: str) -> None:
    """Run an incremental auto-scan for USER_ID now."""
    store = _open_store()
    record = _run(_build_coordinator(store).trigger_user_scan(user_id))

    if record is None:
        console.print(f"[yellow]Nothing stored for {user_id} (not connected or no mail yet).[/yellow]")
        return
    display_scan_record(record, limit=20)


async def _serve(coordinator: ScheduleCoordinator, interval: int, initial_delay: int) -> None:
    coordinator.start(interval=interval, initial_delay=initial_delay)
    try:
        await asyncio.Event().wait()
    finally:
        await coordinator.stop()


@cli.command()
@click.option("--interval", default=constants.SWEEP_INTERVAL_SECONDS, type=int, help="Seconds between sweeps.")
@click.option(
    "--initial-delay",
    default=constants.SWEEP_INITIAL_DELAY_SECONDS,
    type=int,
    help="Seconds before the first sweep.",
)
def run(interval: int, initial_delay: int) -> None:
    """Run the auto-scan scheduler until interrupted."""
    console.print(f"[bold]Auto-scan scheduler running every {interval} seconds.[/bold] Press Ctrl+C to stop.")
    store = _open_store()
    try:
        _run(_serve(_build_coordinator(store), interval, initial_delay))
    except KeyboardInterrupt:
        console.print("[dim]Scheduler stopped.[/dim]")


@cli.group(name="settings")
def settings_group() -> None:
    """Manage per-user auto-scan settings."""


@settings_group.command(name="show")
@click.argument("user_id")
def settings_show(user_id: str) -> None:
    """Show auto-scan settings for USER_ID."""
    store = _open_store()
    settings = _run(store.get_auto_scan_settings(user_id))
    display_settings(user_id, settings)


@settings_group.command(name="set")
@click.argument("user_id")
@click.option("--enable/--disable", "enabled", default=None, help="Turn auto-scan on or off.")
@click.option(
    "--interval",
    type=click.Choice([str(i) for i in ALLOWED_SCAN_INTERVALS]),
    default=None,
    help="Minutes between auto-scans.",
)
def settings_set(user_id: str, enabled: bool | None, interval: str | None) -> None:
    """Update auto-scan settings for USER_ID."""
    partial: dict = {}
    if enabled is not None:
        partial["auto_scan_enabled"] = enabled
    if interval is not None:
        partial["auto_scan_interval"] = int(interval)
    if not partial:
        raise click.ClickException("Nothing to update. Use --enable/--disable or --interval.")

    store = _open_store()
    _run(store.update_auto_scan_settings(user_id, partial))
    settings = _run(store.get_auto_scan_settings(user_id))
    display_settings(user_id, settings)


@cli.group(name="store")
def store_group() -> None:
    """Manage the local result store."""


@store_group.command(name="info")
def store_info() -> None:
    """Show store statistics."""
    store = _open_store()
    info = _run(store.get_info())

    if not (info["user_count"] or info["history_count"] or info["auto_scan_users"]):
        console.print("[dim]Store is empty.[/dim]")
        return

    console.print(f"[bold]Database size:[/bold] {info['db_file_size'] / 1024:.1f} KB")
    console.print(f"[bold]Last scan:[/bold] {info['last_scan_date'] or 'never'}")
    console.print(f"[bold]Users with results:[/bold] {info['user_count']}")
    console.print(f"[bold]Auto-scan users:[/bold] {info['auto_scan_users']}")
    console.print(f"[bold]History entries:[/bold] {info['history_count']}")


@store_group.command(name="clear")
def store_clear() -> None:
    """Clear all stored results, history and settings."""
    store = _open_store()
    _run(store.clear())
    console.print("[green]Store cleared.[/green]")
