"""
RECON Billing CLI

Back-office commands against the same data file the API server uses.
Rich library for formatted output.

Run with:
    python -m interfaces.cli.billing invoices
    python -m interfaces.cli.billing weekly --start 2026-03-02 --end 2026-03-08
    python -m interfaces.cli.billing sent <invoice-id>
    python -m interfaces.cli.billing pdf <invoice-id> -o invoice.pdf
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from core.config import get_config
from core.errors import BillingError
from tools.billing.service import BillingService
from tools.billing.status import stage_label


# ---------------------------------------------------------------------------
# Logging — quieter for terminal use
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("recon.cli")

_STAGE_COLORS = {
    "created": "white",
    "sent": "cyan",
    "overdue": "red",
    "paid": "green",
}


# ---------------------------------------------------------------------------
# BillingCLI
# ---------------------------------------------------------------------------

class BillingCLI:
    """One command per method; each prints its result to the console."""

    def __init__(self, service: BillingService, console: Console | None = None):
        self.service = service
        self.console = console or Console()

    async def customers(self, args):
        customers = await self.service.list_customers()
        if not customers:
            self.console.print("[dim]No customers yet.[/dim]")
            return
        table = Table(title="Customers")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="bold")
        table.add_column("Short")
        table.add_column("Email")
        for c in customers:
            table.add_row(c.id, c.name, c.short_name, c.email)
        self.console.print(table)

    async def invoices(self, args):
        invoices = await self.service.list_invoices()
        if args.stage:
            invoices = [i for i in invoices if self.service.runtime_stage(i) == args.stage]
        if not invoices:
            self.console.print("[dim]No invoices.[/dim]")
            return
        table = Table(title="Invoices")
        table.add_column("Number", style="bold")
        table.add_column("Customer")
        table.add_column("Items", justify="right")
        table.add_column("Gross", justify="right")
        table.add_column("Stage")
        table.add_column("ID", style="dim")
        for inv in invoices:
            stage = self.service.runtime_stage(inv)
            color = _STAGE_COLORS.get(stage, "white")
            table.add_row(
                inv.invoice_number,
                inv.customer_name,
                str(len(inv.line_items)),
                f"{inv.total_gross:.2f}",
                f"[{color}]{stage_label(stage)}[/{color}]",
                inv.id,
            )
        self.console.print(table)

    async def summary(self, args):
        summary = await self.service.invoice_summary()
        table = Table(title="Invoice Summary", show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value", justify="right")
        for key, value in summary.items():
            table.add_row(key.replace("_", " "), f"{value:.2f}" if isinstance(value, float) else str(value))
        self.console.print(table)

    async def weekly(self, args):
        result = await self.service.bill_weekly(args.customer or [], args.start, args.end)
        self.console.print(
            f"Week {result.week.start.date()} .. {result.week.end.date()}: "
            f"[green]{len(result.invoices)} invoice(s) created[/green]"
        )
        for inv in result.invoices:
            self.console.print(
                f"  {inv.invoice_number}  {inv.customer_name}  "
                f"{len(inv.line_items)} item(s)  {inv.total_gross:.2f} EUR"
            )
        if result.skipped_customer_ids:
            self.console.print(f"[dim]Skipped: {', '.join(result.skipped_customer_ids)}[/dim]")

    async def sent(self, args):
        await self.service.mark_invoice_sent(args.invoice_id)
        self.console.print(f"[cyan]Invoice {args.invoice_id} marked sent.[/cyan]")

    async def paid(self, args):
        await self.service.mark_invoice_paid(args.invoice_id)
        self.console.print(f"[green]Invoice {args.invoice_id} marked paid.[/green]")

    async def pdf(self, args):
        invoice = await self.service.get_invoice(args.invoice_id)
        data = await self.service.render_invoice_pdf(args.invoice_id)
        out = Path(args.output or f"Invoice-{invoice.invoice_number}.pdf")
        out.write_bytes(data)
        self.console.print(f"Wrote {out} ({len(data)} bytes)")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="RECON billing back office")
    parser.add_argument("--config", default=None, help="Path to settings.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("customers", help="List customers")

    p = sub.add_parser("invoices", help="List invoices with their stage")
    p.add_argument("--stage", choices=sorted(_STAGE_COLORS), default=None,
                   help="Only show invoices in this stage")

    sub.add_parser("summary", help="Invoice counts and totals per stage")

    p = sub.add_parser("weekly", help="Run weekly billing")
    p.add_argument("--customer", "-c", action="append",
                   help="Customer id (repeatable; default: all customers)")
    p.add_argument("--start", default=None, help="Week start date (default: current ISO week)")
    p.add_argument("--end", default=None, help="Week end date")

    for name, text in (("sent", "Mark an invoice as sent"), ("paid", "Mark an invoice as paid")):
        p = sub.add_parser(name, help=text)
        p.add_argument("invoice_id")

    p = sub.add_parser("pdf", help="Write an invoice PDF")
    p.add_argument("invoice_id")
    p.add_argument("--output", "-o", default=None, help="Output file (default: Invoice-<number>.pdf)")

    return parser.parse_args(argv)


def main(argv=None, service: BillingService | None = None, console: Console | None = None) -> int:
    """Run one command. Returns the process exit code."""
    args = parse_args(argv)
    service = service or BillingService.from_config(get_config(args.config))
    cli = BillingCLI(service, console)
    try:
        asyncio.run(getattr(cli, args.command)(args))
    except BillingError as e:
        logger.info("Command %s failed: %s", args.command, e)
        cli.console.print(f"[red]{e}[/red]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
