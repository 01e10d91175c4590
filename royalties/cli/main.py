"""Main CLI entry point."""

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="royalties",
    help="Royalty accrual and payout scheduling engine CLI",
    add_completion=False,
)

console = Console()


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """Parse a decimal amount like '15.00'."""
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"Invalid amount '{value}'. Expected a decimal (e.g., 15.00)")


def _context():
    from royalties.context import AppContext

    return AppContext.create()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override ROYALTIES_LOG_LEVEL"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
):
    """Configure logging before any command runs."""
    from royalties.logging_setup import configure_logging

    configure_logging(log_level, json=json_logs)


@app.command("init-db")
def init_db(
    force: bool = typer.Option(False, "--force", "-f", help="Drop and recreate tables"),
):
    """Initialize the database schema."""
    from db.connection import get_engine, init_database
    from db.models import Base

    with console.status("Initializing database..."):
        if force:
            Base.metadata.drop_all(get_engine())
            console.print("[yellow]Dropped existing tables[/yellow]")
        init_database()

    console.print("[green]Database initialized successfully[/green]")


@app.command()
def preview(
    months: Optional[int] = typer.Option(None, "--months", "-m", help="Aging window in months"),
    min_amount: Optional[str] = typer.Option(None, "--min-amount", help="Minimum payout amount"),
):
    """Show who would be paid if a batch were triggered now."""
    from royalties.services.eligibility import EligibilityAggregator

    ctx = _context()
    with ctx.session_scope() as session:
        result = EligibilityAggregator(session, ctx.gateway, ctx.clock).preview(
            months, parse_amount(min_amount)
        )

    table = Table(title="Payout Preview")
    table.add_column("Payee", style="cyan")
    table.add_column("Pending", style="green", justify="right")
    table.add_column("Entries", justify="right")
    table.add_column("Oldest Entry")
    table.add_column("Remote Account")
    for p in result.payees:
        table.add_row(
            p.payee_id,
            str(p.total_pending),
            str(p.entry_count),
            p.oldest_entry_date.date().isoformat(),
            p.remote_account_id,
        )
    console.print(table)

    console.print(f"\n[bold]Eligible payees:[/bold] {result.vendor_count}")
    console.print(f"[bold]Total:[/bold] {result.total_amount} {ctx.settings.gateway.currency}")
    console.print(f"[bold]Entries created before:[/bold] {result.eligibility_cutoff.isoformat()}")
    console.print(f"[bold]Next payout date:[/bold] {result.next_payout_date.isoformat()}")


@app.command()
def trigger(
    months: Optional[int] = typer.Option(None, "--months", "-m", help="Aging window in months"),
    min_amount: Optional[str] = typer.Option(None, "--min-amount", help="Minimum payout amount"),
):
    """Schedule a payout batch now (admin review window applies)."""
    from royalties.context import TriggerPayout
    from royalties.services.errors import NoEligiblePayeesError

    ctx = _context()
    try:
        result = ctx.dispatch(
            TriggerPayout(window_months_ago=months, min_amount=parse_amount(min_amount))
        )
    except NoEligiblePayeesError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1)

    if result.created:
        console.print(f"[green]Payout batch scheduled: {result.batch_id}[/green]")
    else:
        console.print(
            f"[yellow]Batch {result.batch_id} is already {result.status.value}; no new batch created[/yellow]"
        )
    console.print(f"  Payees: {result.vendor_count}")
    console.print(f"  Total: {result.total_amount} {ctx.settings.gateway.currency}")
    console.print(f"  Scheduled: {result.scheduled_at.isoformat()}")


@app.command()
def cancel(
    batch_id: Optional[str] = typer.Option(None, "--batch-id", "-b", help="Batch to cancel (default: current)"),
):
    """Cancel the scheduled payout batch."""
    from royalties.context import CancelBatch
    from royalties.services.errors import ConflictError

    ctx = _context()
    try:
        batch = ctx.dispatch(CancelBatch(batch_id))
    except ConflictError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Cancelled batch {batch.batch_id}[/green]")


@app.command()
def status(
    limit: int = typer.Option(5, "--limit", "-n", help="Recent batches to show"),
):
    """Show the in-flight batch, recent batches and ledger counts."""
    from royalties.services.jobs import JobQueue
    from royalties.services.ledger import RoyaltyLedger

    ctx = _context()
    with ctx.session_scope() as session:
        workflow = ctx.workflow(session)
        current = workflow.current_batch()
        batches = workflow.list_batches(limit=limit)
        counts = RoyaltyLedger(session).count_by_status()
        next_job = JobQueue(session, ctx.clock).next_run_at()

        table = Table(title="Payout Batches")
        table.add_column("Batch", style="cyan")
        table.add_column("Status")
        table.add_column("Trigger")
        table.add_column("Payees", justify="right")
        table.add_column("Total", style="green", justify="right")
        table.add_column("Processed", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Scheduled")
        for b in batches:
            table.add_row(
                b.batch_id[:8],
                b.status.value,
                b.trigger.value,
                str(b.payee_count),
                str(b.total_amount),
                str(b.processed_count),
                str(b.failed_count),
                b.scheduled_at.strftime("%Y-%m-%d %H:%M"),
            )
        current_line = f"{current.batch_id} ({current.status.value})" if current else "none"

    console.print(table)
    console.print(f"\n[bold]In-flight batch:[/bold] {current_line}")
    console.print(f"[bold]Next job due:[/bold] {next_job.isoformat() if next_job else 'none'}")
    console.print(
        "[bold]Ledger:[/bold] "
        + ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
        if counts
        else "[bold]Ledger:[/bold] empty"
    )


@app.command()
def tick():
    """Run the payout-day check once (creates at most one batch per payout day)."""
    ctx = _context()
    result = ctx.daily_tick()
    if result is None:
        console.print("No batch created")
    else:
        console.print(f"[green]Payout batch scheduled: {result.batch_id}[/green] ({result.vendor_count} payees)")


@app.command("run-jobs")
def run_jobs(
    limit: int = typer.Option(10, "--limit", "-n", help="Max jobs to claim"),
):
    """Run due scheduled jobs (e.g. process payout batches whose review window elapsed)."""
    ctx = _context()
    summary = ctx.run_due_jobs(limit=limit)
    console.print(
        f"Claimed {summary.claimed}, completed {summary.completed}, failed {summary.failed}"
    )
    for err in summary.errors:
        console.print(f"  [red]{err}[/red]")
    if summary.failed:
        raise typer.Exit(code=1)


@app.command("ingest-sale")
def ingest_sale(
    file: Path = typer.Argument(..., help="JSON file with one completed sale"),
):
    """Record royalties for a completed sale."""
    from pydantic import ValidationError as SchemaError

    from app.schemas.royalties import SaleCompletedRequest
    from royalties.services.errors import ValidationError

    if not file.exists():
        raise typer.BadParameter(f"File not found: {file}")

    try:
        request = SaleCompletedRequest.model_validate_json(file.read_text(encoding="utf-8"))
    except SchemaError as e:
        console.print(f"[red]Invalid sale payload:[/red] {e}")
        raise typer.Exit(code=1)

    ctx = _context()
    try:
        result = ctx.dispatch(request.to_command())
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print(
        f"[green]Sale {result.sale_id}:[/green] {result.created} new entries, "
        f"{result.duplicates} already recorded, royalty {result.total_royalty}"
    )


@app.command("upsert-payee")
def upsert_payee(
    payee_id: str = typer.Argument(..., help="Payee identifier"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
    email: Optional[str] = typer.Option(None, "--email", help="Notification email"),
    remote_account: Optional[str] = typer.Option(None, "--remote-account", help="Processor account id"),
):
    """Create or update a payee's account mapping."""
    from royalties.services.payees import PayeeService

    ctx = _context()
    with ctx.session_scope() as session:
        account = PayeeService(session, ctx.gateway, ctx.clock).upsert(
            payee_id, display_name=name, email=email, remote_account_id=remote_account
        )
        state = account.account_status.value

    console.print(f"[green]Payee {payee_id} saved[/green] (status: {state})")


@app.command("refresh-payee")
def refresh_payee(
    payee_id: str = typer.Argument(..., help="Payee identifier"),
):
    """Re-read a payee's account status from the processor."""
    from royalties.services.errors import GatewayError, ValidationError
    from royalties.services.payees import PayeeService

    ctx = _context()
    try:
        with ctx.session_scope() as session:
            account = PayeeService(session, ctx.gateway, ctx.clock).refresh_status(payee_id)
            state, enabled = account.account_status.value, account.payouts_enabled
    except (GatewayError, ValidationError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Payee {payee_id}: {state}, payouts enabled: {enabled}")


if __name__ == "__main__":
    app()
