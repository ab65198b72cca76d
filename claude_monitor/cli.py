"""
CLI for Claude Monitor.

Inspects and maintains the usage database written by the native host:
list accounts and history, backfill reset markers, reorder, rename and
delete accounts.
"""

import logging
import sqlite3
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from claude_monitor.config import MonitorConfig
from claude_monitor.database import UsageStore
from claude_monitor.resets import ResetDetector
from claude_monitor.stats import reset_count, total_consumed, usage_points

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def get_config(db: Optional[str] = None) -> MonitorConfig:
    """Load configuration from environment, exiting on bad values."""
    try:
        config = MonitorConfig.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    if db:
        config = config.model_copy(update={"db_file": Path(db).expanduser()})
    return config


def open_store(config: MonitorConfig) -> UsageStore:
    """Open the database, or exit with a message if there isn't one yet."""
    if not config.db_path.exists():
        console.print(f"[yellow]No database at {config.db_path}[/yellow]")
        console.print("Install the browser extension and native host first.")
        sys.exit(1)
    try:
        return UsageStore(config.db_path)
    except sqlite3.Error as e:
        console.print(f"[red]Database error:[/red] {e}")
        sys.exit(1)


def _fmt_percent(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.0f}%"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--db", type=click.Path(dir_okay=False), help="Database path (defaults to ~/.claude-monitor/usage.db)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, db: Optional[str]):
    """Claude Monitor - usage history for your Claude accounts."""
    setup_logging(verbose)
    ctx.obj = get_config(db)


@main.command()
@click.pass_obj
def accounts(config: MonitorConfig):
    """List tracked accounts in display order."""
    with open_store(config) as store:
        rows = store.all_accounts()

    if not rows:
        console.print("[yellow]No accounts recorded yet[/yellow]")
        return

    table = Table(title="Accounts", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Email")
    table.add_column("Plan", style="green")
    table.add_column("Usage", justify="right")
    table.add_column("Last Updated", style="dim")

    for account in rows:
        table.add_row(
            str(account.sort_order),
            account.id,
            account.account_name or "",
            account.email or "",
            account.plan or "",
            _fmt_percent(account.latest_percent),
            (account.last_updated or "?")[:19].replace("T", " "),
        )

    console.print(table)


@main.command()
@click.argument("account_id", default="default")
@click.option("--limit", "-n", default=50, type=click.IntRange(min=1), help="Maximum readings")
@click.pass_obj
def history(config: MonitorConfig, account_id: str, limit: int):
    """Show recent readings for ACCOUNT_ID, oldest first."""
    with open_store(config) as store:
        readings = list(reversed(store.history(account_id, limit)))

    if not readings:
        console.print(f"[yellow]No readings for account '{account_id}'[/yellow]")
        return

    deltas = {p.reading_id: p.delta for p in usage_points(readings) if not p.is_synthetic}

    table = Table(title=f"History: {account_id}", show_header=True)
    table.add_column("Timestamp", style="dim")
    table.add_column("Primary", justify="right")
    table.add_column("Session", justify="right")
    table.add_column("Weekly", justify="right")
    table.add_column("Sonnet", justify="right")
    table.add_column("Used", justify="right", style="green")
    table.add_column("Weekly Reset")

    for r in readings:
        ts = r.timestamp[:19].replace("T", " ")
        if r.is_synthetic:
            ts = f"[yellow]{ts} (reset)[/yellow]"
        delta = deltas.get(r.id) if not r.is_synthetic else None
        table.add_row(
            ts,
            _fmt_percent(r.primary_percent),
            _fmt_percent(r.session_percent),
            _fmt_percent(r.weekly_all_percent),
            _fmt_percent(r.weekly_sonnet_percent),
            f"+{delta:.0f}" if delta else "",
            r.weekly_reset or "",
        )

    console.print(table)

    points = usage_points(readings)
    console.print(
        f"[dim]Consumed {total_consumed(points):.0f} points of weekly quota "
        f"across {reset_count(points)} reset(s) in this window[/dim]"
    )


@main.command()
@click.option("--account", "-a", "account_id", help="Only backfill this account")
@click.pass_obj
def backfill(config: MonitorConfig, account_id: Optional[str]):
    """Insert reset markers for resets already in the history.

    Safe to re-run: resets that already have markers are skipped.
    """
    with open_store(config) as store:
        detector = ResetDetector(
            store,
            threshold=config.reset_threshold,
            window_seconds=config.backfill_window_seconds,
            tz=config.reset_timezone,
        )
        inserted = detector.backfill(account_id)

    if inserted:
        console.print(f"[green][OK][/green] Inserted {inserted} synthetic points")
    else:
        console.print("[dim]Nothing to backfill[/dim]")


@main.command()
@click.argument("account_id")
@click.pass_obj
def reorder(config: MonitorConfig, account_id: str):
    """Move ACCOUNT_ID to the front of the display order."""
    with open_store(config) as store:
        if store.get_account(account_id) is None:
            console.print(f"[red]Error:[/red] Unknown account: {account_id}")
            sys.exit(1)
        moved = store.reorder_to_front(account_id)

    if moved:
        console.print(f"[green][OK][/green] {account_id} is now first")
    else:
        console.print(f"[dim]{account_id} is already first[/dim]")


@main.command()
@click.argument("account_id")
@click.argument("name", required=False)
@click.pass_obj
def rename(config: MonitorConfig, account_id: str, name: Optional[str]):
    """Set the display NAME for ACCOUNT_ID (omit NAME to clear it)."""
    with open_store(config) as store:
        if not store.rename_account(account_id, name):
            console.print(f"[red]Error:[/red] Unknown account: {account_id}")
            sys.exit(1)

    if name and name.strip():
        console.print(f"[green][OK][/green] Renamed {account_id} to '{name.strip()}'")
    else:
        console.print(f"[green][OK][/green] Cleared display name for {account_id}")


@main.command()
@click.argument("account_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def delete(config: MonitorConfig, account_id: str, yes: bool):
    """Delete ACCOUNT_ID and all of its readings."""
    with open_store(config) as store:
        account = store.get_account(account_id)
        if account is None:
            console.print(f"[red]Error:[/red] Unknown account: {account_id}")
            sys.exit(1)

        if not yes:
            console.print(Panel(
                f"[bold red]This permanently deletes the account and its history.[/bold red]\n\n"
                f"Account: [cyan]{account.id}[/cyan]\n"
                f"Name: {account.account_name or '-'}\n"
                f"Email: {account.email or '-'}",
                title="Delete Account",
            ))
            if not click.confirm(f"Delete account {account_id}?"):
                console.print("Cancelled")
                return

        store.delete_account(account_id)

    console.print(f"[green][OK][/green] Deleted account {account_id}")


if __name__ == "__main__":
    main()
