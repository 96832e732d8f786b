"""
Main CLI entry point for the epoch auto-voter.
"""

import asyncio
import logging
import time

import click
from rich.console import Console
from rich.table import Table

from autovoter.database import LedgerDatabase
from autovoter.errors import AutoVoterError
from autovoter.events import StatusEvent, VoteStatusEvent
from autovoter.service import AutoVoterService
from autovoter.utils import (
    epoch_id,
    epoch_to_datetime,
    format_percentage,
    format_token_amount,
    format_usd,
    setup_logging,
    time_until,
)
from config import Config

console = Console()


def _print_config_errors() -> bool:
    errors = Config.validate()
    if errors:
        console.print("[bold red]Configuration errors:[/bold red]")
        for error in errors:
            console.print(f"  ❌ {error}")
    return not errors


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """Epoch auto-voter - vote late, vote once, compound the rewards."""
    log_level = "DEBUG" if debug else Config.LOG_LEVEL
    setup_logging(log_level, Config.LOG_FILE)


@cli.command()
def setup():
    """Validate configuration, initialize the ledger and test the RPC."""
    if not _print_config_errors():
        return
    console.print("✅ Configuration valid")

    LedgerDatabase(Config.DATABASE_PATH)
    console.print(f"✅ Ledger initialized: {Config.DATABASE_PATH}")

    service = AutoVoterService.from_config(dry_run=True)
    try:
        close = asyncio.run(service.executor.chain.current_epoch_close(int(time.time())))
        console.print(f"✅ Connected to RPC (epoch closes {epoch_to_datetime(close):%Y-%m-%d %H:%M} UTC)")
    except Exception as e:
        console.print(f"[red]❌ RPC connection failed: {e}[/red]")
        return
    console.print("\n[bold green]Setup complete! Ready to use.[/bold green]")


@cli.command()
@click.option("--immediate", is_flag=True, help="Refresh continuously instead of waking near epoch close")
@click.option("--dry-run", is_flag=True, help="Simulate transactions without broadcasting")
def run(immediate, dry_run):
    """Start the scanner, sniper and auto-compound loops."""
    if not _print_config_errors():
        return

    service = AutoVoterService.from_config(dry_run=dry_run, immediate=immediate)

    def show(event):
        if isinstance(event, VoteStatusEvent) and event.terminal:
            style = "green" if event.success else "red"
            console.print(f"[{style}]{event.message}[/{style}]")
        elif isinstance(event, StatusEvent):
            console.print(f"[dim]{event.message}[/dim]")

    service.events.subscribe(show)
    if dry_run:
        console.print("[bold yellow]═══ DRY RUN MODE - NO TRANSACTIONS SENT ═══[/bold yellow]")
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


@cli.command()
def epoch():
    """Show the current epoch close, id and time remaining."""
    service = AutoVoterService.from_config(dry_run=True)
    now = int(time.time())
    try:
        close = asyncio.run(service.executor.chain.current_epoch_close(now))
    except Exception as e:
        console.print(f"[red]Failed to read epoch close: {e}[/red]")
        logging.exception("Epoch read error")
        return
    console.print(f"[bold]Epoch {epoch_id(close)}[/bold]")
    console.print(f"Closes: {epoch_to_datetime(close):%Y-%m-%d %H:%M:%S} UTC")
    console.print(f"Remaining: {time_until(close, now)}")


async def _scan_and_project(service: AutoVoterService, percentage):
    await service.scanner.scan_once()
    return await service.controller.project(percentage)


@cli.command()
@click.option("--percentage", default=None, help="Percent of voting power to commit (default from .env)")
@click.option("--top", default=15, help="Number of targets to show")
def project(percentage, top):
    """Run one full scan and show projected rewards per target."""
    service = AutoVoterService.from_config(dry_run=True)
    try:
        projections = asyncio.run(_scan_and_project(service, percentage))
    except AutoVoterError as e:
        console.print(f"[red]{e}[/red]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Pool", style="cyan", width=30)
    table.add_column("Votes", justify="right", style="yellow")
    table.add_column("Share", justify="right", style="blue")
    table.add_column("Expected Return", justify="right", style="green")
    table.add_column("APR", justify="right")

    for p in projections[:top]:
        name = p.target.name
        table.add_row(
            name[:28] + "..." if len(name) > 30 else name,
            f"{format_token_amount(p.added_weight):,.2f}",
            format_percentage(float(p.share) * 100),
            format_usd(p.projected_reward_usd),
            format_percentage(p.projected_apr),
        )
    console.print(table)


async def _scan_and_read_balances(service: AutoVoterService):
    await service.scanner.scan_once()
    return await service.controller.scan_balances()


@cli.command()
def balances():
    """Show wallet token holdings and the voting power of each veNFT."""
    service = AutoVoterService.from_config(dry_run=True)
    report = asyncio.run(_scan_and_read_balances(service))
    if report is None:
        console.print("[red]Balance scan failed, see the log for details[/red]")
        return

    table = Table(title="Wallet", show_header=True, header_style="bold magenta")
    table.add_column("Token", style="cyan")
    table.add_column("Amount", justify="right", style="yellow")
    table.add_column("Value", justify="right", style="green")
    for balance in report.tokens:
        table.add_row(balance.symbol, f"{balance.normalized():,.4f}", format_usd(balance.usd_value))
    console.print(table)

    power = Table(title="Voting Power", show_header=True, header_style="bold magenta")
    power.add_column("NFT", justify="right")
    power.add_column("Power", justify="right", style="yellow")
    for token_id, amount in report.voting_power.items():
        power.add_row(f"#{token_id}", f"{format_token_amount(amount):,.2f}")
    console.print(power)
    console.print(f"Total: {format_usd(report.total_usd)} in wallet, "
                  f"{format_token_amount(report.total_voting_power):,.2f} voting power")


@cli.command()
@click.option("--limit", default=20, help="Number of transactions to show")
def history(limit):
    """Show executed transactions and per-epoch performance."""
    db = LedgerDatabase(Config.DATABASE_PATH)

    table = Table(title="Transactions", show_header=True, header_style="bold magenta")
    table.add_column("Time")
    table.add_column("Type", style="cyan")
    table.add_column("Pools")
    table.add_column("Value", justify="right", style="green")
    table.add_column("Status")
    table.add_column("Tx")
    for record in db.load_transactions()[:limit]:
        table.add_row(
            f"{epoch_to_datetime(record.timestamp):%Y-%m-%d %H:%M}",
            record.kind,
            ", ".join(record.targets),
            format_usd(record.value_usd),
            record.status.value,
            record.tx_hash,
        )
    console.print(table)

    epochs = Table(title="Epochs", show_header=True, header_style="bold magenta")
    epochs.add_column("Epoch", justify="right")
    epochs.add_column("Index APR", justify="right", style="blue")
    epochs.add_column("Your APR", justify="right", style="green")
    epochs.add_column("Earnings", justify="right", style="green")
    epochs.add_column("Pools Voted", justify="right")
    for record in sorted(db.load_epochs().values(), key=lambda r: r.epoch_id, reverse=True):
        epochs.add_row(
            str(record.epoch_id),
            format_percentage(record.index_apr),
            format_percentage(record.user_apr),
            format_usd(record.earnings),
            str(record.pools_voted),
        )
    console.print(epochs)


if __name__ == "__main__":
    cli()
