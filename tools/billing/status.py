"""
Invoice Status Engine.

Stored lifecycle:   created ──► sent ──► paid (terminal)

"overdue" is a display stage only. It is derived at read time from the
stored status and the time since sending, never written to the store:

    stage = overdue  iff  status == sent  and  now - sent_at > payment window

Mark-paid policy: strict. An invoice must have been sent before it can be
paid; paying a "created" invoice raises InvalidTransitionError.
"""

from datetime import datetime, timedelta
from typing import Optional

from core.errors import InvalidTransitionError
from core.models import Invoice, parse_timestamp, to_iso, utc_now

PAYMENT_WINDOW_DAYS = 14

STAGE_CREATED = "created"
STAGE_SENT = "sent"
STAGE_OVERDUE = "overdue"
STAGE_PAID = "paid"

RUNTIME_STAGES = (STAGE_CREATED, STAGE_SENT, STAGE_OVERDUE, STAGE_PAID)

# Stored status → statuses reachable from it
VALID_INVOICE_TRANSITIONS = {
    "created": ["sent"],
    "sent": ["paid"],
    "paid": [],  # TERMINAL
}

_STAGE_LABELS = {
    STAGE_CREATED: "Created",
    STAGE_SENT: "Sent",
    STAGE_OVERDUE: "Overdue",
    STAGE_PAID: "Paid",
}


def due_at(invoice: Invoice, payment_window_days: int = PAYMENT_WINDOW_DAYS) -> Optional[datetime]:
    """When payment is due, or None if the invoice is not awaiting payment."""
    if invoice.status != "sent":
        return None
    sent = parse_timestamp(invoice.sent_at)
    if sent is None:
        return None
    return sent + timedelta(days=payment_window_days)


def is_overdue(
    invoice: Invoice,
    now: Optional[datetime] = None,
    payment_window_days: int = PAYMENT_WINDOW_DAYS,
) -> bool:
    due = due_at(invoice, payment_window_days)
    if due is None:
        return False
    return (now or utc_now()) > due


def runtime_stage(
    invoice: Invoice,
    now: Optional[datetime] = None,
    payment_window_days: int = PAYMENT_WINDOW_DAYS,
) -> str:
    """Display stage: created / sent / overdue / paid."""
    if invoice.status == "paid":
        return STAGE_PAID
    if invoice.status == "created":
        return STAGE_CREATED
    if is_overdue(invoice, now, payment_window_days):
        return STAGE_OVERDUE
    return STAGE_SENT


def stage_label(stage: str) -> str:
    return _STAGE_LABELS.get(stage, stage)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_INVOICE_TRANSITIONS.get(from_status, [])


def mark_sent(invoice: Invoice, now: Optional[datetime] = None) -> Invoice:
    """created → sent. Sets sent_at. Raises InvalidTransitionError otherwise."""
    if not can_transition(invoice.status, "sent"):
        raise InvalidTransitionError(invoice.id, invoice.status, "sent")
    invoice.status = "sent"
    invoice.sent_at = to_iso(now or utc_now())
    return invoice


def mark_paid(invoice: Invoice, now: Optional[datetime] = None) -> Invoice:
    """sent (including derived overdue) → paid. Sets paid_at."""
    if not can_transition(invoice.status, "paid"):
        raise InvalidTransitionError(invoice.id, invoice.status, "paid")
    invoice.status = "paid"
    invoice.paid_at = to_iso(now or utc_now())
    return invoice
