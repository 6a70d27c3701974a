"""
Weekly Aggregator — one invoice per customer per week.

Collects every completed, not-yet-billed order a customer finished inside
the week and hands them to the Invoice Builder. Customers that are
unknown or have nothing to bill are reported as skipped.

All week boundaries are UTC. A range runs from 00:00:00.000 on the start
day through 23:59:59.999 on the end day, both inclusive, and orders are
compared by instant (completed_at), not by calendar date.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from core.errors import ValidationError
from core.models import (
    DEFAULT_INVOICE_PREFIX,
    DEFAULT_TAX_RATE,
    Database,
    Invoice,
    Order,
    parse_timestamp,
    to_iso,
    utc_now,
)
from tools.billing.invoice_builder import build_invoice

logger = logging.getLogger("recon.billing.weekly")

_END_OF_DAY = time(23, 59, 59, 999000)


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are read as UTC, aware ones converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Week boundaries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WeekRange:
    """Inclusive billing window [start, end] in UTC."""
    start: datetime
    end: datetime

    def normalized(self) -> "WeekRange":
        """Snap start to the beginning and end to the last millisecond of their days."""
        start = _as_utc(self.start)
        end = _as_utc(self.end)
        return WeekRange(
            start=datetime.combine(start.date(), time.min, tzinfo=timezone.utc),
            end=datetime.combine(end.date(), _END_OF_DAY, tzinfo=timezone.utc),
        )

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def to_dict(self) -> dict:
        return {"week_start": to_iso(self.start), "week_end": to_iso(self.end)}


def current_iso_week(now: Optional[datetime] = None) -> WeekRange:
    """Monday 00:00:00.000 through Sunday 23:59:59.999 of the week containing now (UTC)."""
    now = _as_utc(now or utc_now())
    monday = now.date() - timedelta(days=now.isoweekday() - 1)
    sunday = monday + timedelta(days=6)
    return WeekRange(
        start=datetime.combine(monday, time.min, tzinfo=timezone.utc),
        end=datetime.combine(sunday, _END_OF_DAY, tzinfo=timezone.utc),
    )


def resolve_week_range(
    week_start: Any = None,
    week_end: Any = None,
    now: Optional[datetime] = None,
) -> WeekRange:
    """Turn caller input into a normalized WeekRange.

    No input at all → the current ISO week. Only one bound, an
    unparseable bound, or start after end → ValidationError.
    """
    if _blank(week_start) and _blank(week_end):
        return current_iso_week(now)
    if _blank(week_start) or _blank(week_end):
        raise ValidationError("week_start and week_end must be given together")

    start = parse_timestamp(week_start)
    end = parse_timestamp(week_end)
    if start is None:
        raise ValidationError(f"Invalid week_start: {week_start!r}")
    if end is None:
        raise ValidationError(f"Invalid week_end: {week_end!r}")

    week = WeekRange(start, end).normalized()
    if week.start > week.end:
        raise ValidationError("week_start is after week_end")
    return week


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def find_orders_for_weekly_invoicing(db: Database, customer_id: str, week: WeekRange) -> list[Order]:
    """Completed, unbilled orders of one customer completed inside the week."""
    week = week.normalized()
    selected = []
    for order in db.orders:
        if order.customer_id != customer_id or order.status != "completed" or order.is_billed:
            continue
        completed = parse_timestamp(order.completed_at)
        if completed is None:
            continue
        if week.contains(completed):
            selected.append(order)
    return selected


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@dataclass
class WeeklyBillingResult:
    """Outcome of one weekly billing run."""
    week: WeekRange
    invoices: list[Invoice] = field(default_factory=list)
    skipped_customer_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            **self.week.to_dict(),
            "invoices": [inv.to_dict() for inv in self.invoices],
            "skipped_customers": list(self.skipped_customer_ids),
        }


def apply_weekly_billing(
    db: Database,
    customer_ids: Iterable[str],
    week: WeekRange,
    *,
    tax_rate: float = DEFAULT_TAX_RATE,
    prefix: str = DEFAULT_INVOICE_PREFIX,
    now: Optional[datetime] = None,
    new_invoice_id: Optional[Callable[[], str]] = None,
) -> WeeklyBillingResult:
    """Bill every given customer for the week, mutating db in place.

    Meant to run as the body of a single store mutation so the whole
    batch commits or nothing does.
    """
    week = week.normalized()
    now = now or utc_now()
    result = WeeklyBillingResult(week=week)

    for customer_id in customer_ids:
        customer = db.find_customer(customer_id)
        if customer is None:
            logger.warning("Weekly billing: customer %s not found, skipping", customer_id)
            result.skipped_customer_ids.append(customer_id)
            continue

        orders = find_orders_for_weekly_invoicing(db, customer_id, week)
        if not orders:
            logger.info("Weekly billing: nothing to bill for %s", customer.name)
            result.skipped_customer_ids.append(customer_id)
            continue

        invoice = build_invoice(
            orders, customer, len(db.invoices), db.company_profile,
            tax_rate=tax_rate, prefix=prefix, now=now,
            invoice_id=new_invoice_id() if new_invoice_id else None,
        )
        for order in orders:
            order.invoice_id = invoice.id
        db.invoices.append(invoice)
        result.invoices.append(invoice)

    return result
