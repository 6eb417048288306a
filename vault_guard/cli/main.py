"""
CLI interface for Vault Guard.

Operator commands for the mirror database, capacity checks and the
reconciliation loop.
"""

import logging
import sqlite3
import sys

import typer
import yaml
from rich.console import Console
from rich.table import Table

from vault_guard.config.loader import load_config
from vault_guard.core.address import normalize_address
from vault_guard.core.capacity import has_capacity
from vault_guard.core.pricing import WEI_PER_TOKEN, tokens_required
from vault_guard.core.reconciliation import Reconciler, ReconciliationLoop, TickReport
from vault_guard.sdk.vault_client import LedgerError, get_ledger_client
from vault_guard.storage.repository import AccountRepository, ObjectRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_CONFIG = "vault_guard.yaml"

ConfigOption = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML configuration")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Vault Guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("Vault Guard - Use --help to see available commands")


@app.command()
def init(config_path: str = ConfigOption):
    """Initialize the account mirror database."""
    try:
        config = load_config(config_path)
        initialize_schema(config.storage.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.storage.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def account(address: str, config_path: str = ConfigOption):
    """Show the mirrored and live ledger state of an account."""
    try:
        config = load_config(config_path)
        holder = normalize_address(address)
        ledger = get_ledger_client(config.ledger)
        mirror = AccountRepository(config.storage.db_path).get(holder)
        live_balance = ledger.balance_of(holder)
        live_consumption = ledger.consumption_of(holder)
        files = ObjectRepository(config.storage.db_path).list_active(holder)
    except (FileNotFoundError, ValueError, yaml.YAMLError, sqlite3.Error, LedgerError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Account {holder}")
    table.add_column("Field")
    table.add_column("Mirror", justify="right")
    table.add_column("Ledger", justify="right")
    table.add_row(
        "Balance (tokens)",
        _format_tokens(mirror.balance) if mirror and mirror.balance is not None else "-",
        _format_tokens(live_balance)
    )
    table.add_row(
        "Consumption (bytes)",
        f"{mirror.consumption:,}" if mirror else "-",
        f"{live_consumption:,}"
    )
    table.add_row("Required (tokens)", "", _format_tokens(tokens_required(live_consumption)))
    table.add_row("Live files", f"{len(files):,}", "")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def check(address: str, size: int, config_path: str = ConfigOption):
    """Check whether SIZE more bytes fit the account's paid capacity."""
    try:
        config = load_config(config_path)
        ledger = get_ledger_client(config.ledger)
        allowed = has_capacity(ledger, address, size)
    except (ValueError, LedgerError) as e:
        # Fail closed: any uncertainty denies capacity
        console.print(f"[red]Denied:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if allowed:
        console.print(f"[green]✓[/] {size:,} bytes admitted for {address}")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] Insufficient vault balance for {size:,} bytes")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def reconcile(config_path: str = ConfigOption):
    """Run a single settlement and remediation tick."""
    config = load_config(config_path)
    report = _build_reconciler(config).run_tick()
    _display_report(report)
    sys.exit(EXIT_CODE_PASS if report.settled and not report.failures else EXIT_CODE_FAIL)


@app.command()
def run(
    config_path: str = ConfigOption,
    now: bool = typer.Option(False, "--now", help="Run one tick before waiting")
):
    """Run the reconciliation loop in the foreground."""
    config = load_config(config_path)
    reconciler = _build_reconciler(config)
    loop = ReconciliationLoop(reconciler, config.reconciliation.interval_seconds)
    console.print(
        f"Reconciling every {config.reconciliation.interval_seconds:,.0f}s - Ctrl+C to stop"
    )
    try:
        if now:
            _display_report(reconciler.run_tick())
        loop.run_forever()
    except KeyboardInterrupt:
        console.print("Stopped")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def approve(
    amount: int = typer.Option(100_000_000_000, "--amount", "-a", help="Allowance in whole tokens"),
    config_path: str = ConfigOption
):
    """Approve the vault to spend the signer's tokens. Run once per signer."""
    config = load_config(config_path)
    try:
        result = get_ledger_client(config.ledger).approve(amount * WEI_PER_TOKEN)
    except LedgerError as e:
        console.print(f"[red]Approve failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.success:
        console.print(f"[green]✓[/] Approved {amount:,} tokens (tx {result.tx_hash})")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] Approve reverted (tx {result.tx_hash})")
    sys.exit(EXIT_CODE_FAIL)


def _build_reconciler(config) -> Reconciler:
    return Reconciler(
        get_ledger_client(config.ledger),
        AccountRepository(config.storage.db_path),
        ObjectRepository(config.storage.db_path)
    )


def _format_tokens(wei: int) -> str:
    """Format a wei amount as whole tokens with 4 decimals."""
    sign = "-" if wei < 0 else ""
    whole, frac = divmod(abs(wei), WEI_PER_TOKEN)
    return f"{sign}{whole:,}.{frac * 10_000 // WEI_PER_TOKEN:04d}"


def _display_report(report: TickReport) -> None:
    """Display a reconciliation tick summary."""
    console.print("\n[bold]Reconciliation Result[/bold]")
    console.print("-" * 40)

    if not report.settled:
        console.print("[red]Settlement failed[/] - remediation skipped")
    else:
        console.print(f"Settlement tx: {report.settlement_tx}")
        console.print(f"Accounts checked: {report.candidates:,}")
        console.print(f"Balances refreshed: {len(report.refreshed):,}")
        console.print(f"Accounts remediated: {len(report.remediated):,}")
        for address in report.remediated:
            console.print(f"  [yellow]{address}[/]")

    for address, step, message in report.failures:
        console.print(f"[red]Failure[/] {address or '-'} {step}: {message}")


if __name__ == "__main__":
    app()
