"""Command-line interface for operating the rewards backend."""

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from nexus.accounts.exceptions import AccountError
from nexus.accounts.service import AccountService
from nexus.ledger.service import PointsLedger
from nexus.logging_config import configure_logging, get_logger
from nexus.referral.codes import normalize_code
from nexus.referral.service import ReferralService
from nexus.referral.stats import ReferralStatsAggregator
from nexus.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="nexus",
    help="Nexus rewards - accounts, points ledger and referrals",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _resolve_account_id(accounts: AccountService, wallet_or_id: str) -> str:
    account = accounts.get_account_by_wallet(wallet_or_id) or accounts.get_account(wallet_or_id)
    if account is None:
        console.print(f"[red]Account {wallet_or_id} not found[/red]")
        raise typer.Exit(1)
    return account.id


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("account-create")
def create_account(
    wallet_address: Annotated[str, typer.Argument(help="Wallet address")],
    network: Annotated[str, typer.Option("--network", "-n", help="Wallet network")] = "TESTNET",
    display_name: Annotated[str | None, typer.Option("--name", help="Display name")] = None,
    referral_code: Annotated[str | None, typer.Option("--ref", help="Referral code to apply")] = None,
) -> None:
    """Create an account for a wallet."""
    accounts = AccountService(db)
    try:
        account = accounts.create_account(
            wallet_address,
            network=network,
            display_name=display_name,
            pending_referral_code=referral_code,
        )
    except AccountError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Account created with ID: [bold]{account.id}[/bold]")
    console.print(f"  Referral code: {account.referral_code}")
    console.print(f"  Points: {account.total_points}")
    if account.referred_by:
        console.print(f"  Referred by: {account.referred_by}")


@app.command("referral-apply")
def apply_referral(
    wallet_address: Annotated[str, typer.Argument(help="Wallet applying the code")],
    code: Annotated[str, typer.Argument(help="Referral code")],
) -> None:
    """Apply a referral code on behalf of an account."""
    accounts = AccountService(db)
    account_id = _resolve_account_id(accounts, wallet_address)

    result = ReferralService(db, accounts=accounts).submit_referral_code(account_id, normalize_code(code))
    if result.success:
        console.print(f"[bold green]✓[/bold green] {result.message}")
        if not result.referrer_credited:
            console.print("[yellow]Referrer credit deferred to reconciliation[/yellow]")
    elif result.already_applied:
        console.print(f"[yellow]{result.message}[/yellow]")
    else:
        console.print(f"[bold red]✗[/bold red] {result.message} ({result.error_kind.value})")
        raise typer.Exit(1)


@app.command("referral-stats")
def referral_stats(
    wallet_address: Annotated[str, typer.Argument(help="Wallet address or account ID")],
    recompute: Annotated[bool, typer.Option("--recompute", help="Rebuild counters from the ledger")] = False,
) -> None:
    """Show (or recompute) an account's referral counters."""
    accounts = AccountService(db)
    account_id = _resolve_account_id(accounts, wallet_address)
    aggregator = ReferralStatsAggregator(db, accounts=accounts)

    stats = aggregator.recompute_referral_stats(account_id) if recompute else aggregator.get_stats(account_id)

    console.print(f"[bold]Account:[/bold] {stats.account_id}")
    console.print(f"[bold]Referrals:[/bold] {stats.referrals_count}")
    console.print(f"[bold]Referral points:[/bold] {stats.total_referral_points}")

    referred = accounts.list_referred_accounts(account_id)
    if referred:
        table = Table(title="Referred accounts")
        table.add_column("Wallet", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Referred At")
        for item in referred:
            table.add_row(
                item.wallet_address,
                item.display_name or "-",
                item.referred_at.strftime("%Y-%m-%d %H:%M") if item.referred_at else "-",
            )
        console.print(table)


@app.command("referral-reconcile")
def reconcile_referrals() -> None:
    """Credit referrers whose bonus failed after the referral was applied."""
    report = ReferralStatsAggregator(db).reconcile_referrer_credits()

    console.print(f"[bold]Scanned:[/bold] {report.scanned}")
    console.print(f"[bold green]Repaired:[/bold green] {len(report.repaired)}")
    if report.pending:
        console.print(f"[bold yellow]Still pending:[/bold yellow] {len(report.pending)}")
        for referred_id in report.pending:
            console.print(f"  - {referred_id}")


@app.command("ledger-audit")
def audit_ledger(
    wallet_address: Annotated[str, typer.Argument(help="Wallet address or account ID")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Transactions to list")] = 20,
) -> None:
    """Reconcile an account's point total against its ledger."""
    accounts = AccountService(db)
    account_id = _resolve_account_id(accounts, wallet_address)
    ledger = PointsLedger(db)

    audit = ledger.audit(account_id)

    table = Table(title="Ledger")
    table.add_column("Timestamp")
    table.add_column("Type", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("XP", justify="right")
    table.add_column("Reason", style="green")
    for tx in ledger.history(account_id, limit=limit):
        table.add_row(
            tx.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            tx.type.value,
            str(tx.signed_amount),
            str(tx.experience),
            tx.reason,
        )
    console.print(table)

    console.print(f"[bold]Ledger total:[/bold] {audit.ledger_total}")
    console.print(f"[bold]Account total:[/bold] {audit.account_total}")
    if audit.consistent:
        console.print("[bold green]✓[/bold green] Ledger and account agree")
    else:
        console.print(f"[bold red]✗[/bold red] Drift of {audit.drift} points")
        raise typer.Exit(1)


@app.command("import-legacy")
def import_legacy(
    path: Annotated[Path, typer.Argument(help="JSON file with a list of legacy account documents")],
) -> None:
    """Import accounts exported from the legacy document store."""
    documents = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(documents, dict):
        # Export keyed by document ID
        documents = [{"id": key, **value} for key, value in documents.items()]

    accounts = AccountService(db)
    imported = 0
    skipped = 0
    for doc in documents:
        try:
            accounts.import_legacy_account(doc)
            imported += 1
        except (AccountError, ValueError) as e:
            skipped += 1
            console.print(f"[yellow]Skipped {doc.get('walletAddress', '?')}: {e}[/yellow]")

    console.print(f"[bold green]✓[/bold green] Imported {imported} accounts ({skipped} skipped)")


if __name__ == "__main__":
    app()
