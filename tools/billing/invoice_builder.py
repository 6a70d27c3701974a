"""
Invoice Builder — turns a batch of orders into a priced invoice.

Pure construction: no store access, no validation. Callers hand in
orders that are already selected for billing together (all of one
customer, none billed yet) and persist the result themselves.

Pricing per order: unit net = base service price, extras net = sum of
add-on prices, total net = unit + extras; each value is rounded to 2
decimals on its own (round-then-sum). The invoice subtotal is the
rounded sum of the rounded line totals, tax and gross are rounded again.
"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from core.models import (
    DEFAULT_INVOICE_PREFIX,
    DEFAULT_TAX_RATE,
    CompanyProfile,
    Customer,
    Invoice,
    InvoiceLineItem,
    Order,
    new_id,
    round_currency,
    to_iso,
    utc_now,
)

logger = logging.getLogger("recon.billing.builder")


def build_line_items(orders: Sequence[Order]) -> list[InvoiceLineItem]:
    """One line item per order, positions 1..n in input order."""
    return [InvoiceLineItem.from_order(order, index + 1) for index, order in enumerate(orders)]


def calc_totals(line_items: Sequence[InvoiceLineItem], tax_rate: float) -> dict:
    """Compute subtotal_net, tax_amount, total_gross from rounded line totals."""
    subtotal_net = round_currency(sum(item.total_net for item in line_items))
    tax_amount = round_currency(subtotal_net * tax_rate)
    total_gross = round_currency(subtotal_net + tax_amount)
    return {
        "subtotal_net": subtotal_net,
        "tax_amount": tax_amount,
        "total_gross": total_gross,
    }


def next_invoice_number(
    existing_invoices_count: int,
    year: int,
    prefix: str = DEFAULT_INVOICE_PREFIX,
) -> str:
    """RE-2026-00001 style number: sequence = existing count + 1, 5 digits.

    The sequence comes from the invoice count at mutation time. That is
    race-free inside the single-writer store but not across processes
    sharing one data file.
    """
    return f"{prefix}-{year}-{existing_invoices_count + 1:05d}"


def build_invoice(
    orders: Sequence[Order],
    customer: Customer,
    existing_invoices_count: int,
    issuer: CompanyProfile,
    *,
    tax_rate: float = DEFAULT_TAX_RATE,
    prefix: str = DEFAULT_INVOICE_PREFIX,
    now: Optional[datetime] = None,
    invoice_id: Optional[str] = None,
) -> Invoice:
    """Build a new invoice (status created) over the given orders.

    invoice_id is normally drawn from BillingStore.new_invoice_id().
    """
    now = now or utc_now()
    line_items = build_line_items(orders)
    totals = calc_totals(line_items, tax_rate)

    invoice = Invoice(
        id=invoice_id or new_id("inv"),
        invoice_number=next_invoice_number(existing_invoices_count, now.year, prefix),
        issuer=CompanyProfile(**issuer.to_dict()),
        customer_id=customer.id,
        customer_name=customer.name,
        order_ids=[order.id for order in orders],
        line_items=line_items,
        tax_rate=tax_rate,
        status="created",
        created_at=to_iso(now),
        **totals,
    )
    logger.debug(
        "Built invoice %s for %s: %d line(s), net %.2f, gross %.2f",
        invoice.invoice_number, customer.name, len(line_items),
        invoice.subtotal_net, invoice.total_gross,
    )
    return invoice
