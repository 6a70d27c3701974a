"""Invoice status machine and the derived overdue stage."""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import InvalidTransitionError
from core.models import CompanyProfile, Invoice, to_iso
from tools.billing import status

SENT_AT = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def _invoice(state="created", sent_at=None):
    return Invoice(
        id="inv_1",
        invoice_number="RE-2026-00001",
        issuer=CompanyProfile(name="Shop"),
        customer_id="cust_1",
        customer_name="Autohaus Nord",
        order_ids=[],
        line_items=[],
        subtotal_net=100.0,
        tax_rate=0.19,
        tax_amount=19.0,
        total_gross=119.0,
        status=state,
        created_at=to_iso(SENT_AT),
        sent_at=to_iso(sent_at) if sent_at else None,
    )


class TestRuntimeStage:

    def test_created_and_paid_are_stored_stages(self):
        assert status.runtime_stage(_invoice("created")) == "created"
        assert status.runtime_stage(_invoice("paid", SENT_AT), SENT_AT + timedelta(days=90)) == "paid"

    def test_sent_within_window(self):
        invoice = _invoice("sent", SENT_AT)
        assert status.runtime_stage(invoice, SENT_AT + timedelta(days=13)) == "sent"

    def test_sent_past_window_is_overdue(self):
        invoice = _invoice("sent", SENT_AT)
        assert status.runtime_stage(invoice, SENT_AT + timedelta(days=15)) == "overdue"

    def test_exactly_at_window_is_not_overdue(self):
        invoice = _invoice("sent", SENT_AT)
        assert status.runtime_stage(invoice, SENT_AT + timedelta(days=14)) == "sent"

    def test_custom_window(self):
        invoice = _invoice("sent", SENT_AT)
        assert status.runtime_stage(invoice, SENT_AT + timedelta(days=8), payment_window_days=7) == "overdue"

    def test_sent_without_timestamp_never_overdue(self):
        assert status.runtime_stage(_invoice("sent"), SENT_AT + timedelta(days=400)) == "sent"

    def test_due_at_only_while_awaiting_payment(self):
        assert status.due_at(_invoice("sent", SENT_AT)) == SENT_AT + timedelta(days=14)
        assert status.due_at(_invoice("created")) is None
        assert status.due_at(_invoice("paid", SENT_AT)) is None


class TestTransitions:

    def test_mark_sent_from_created(self):
        invoice = status.mark_sent(_invoice("created"), SENT_AT)
        assert invoice.status == "sent"
        assert invoice.sent_at == "2026-03-01T08:00:00.000+00:00"

    def test_mark_paid_from_sent(self):
        paid_at = SENT_AT + timedelta(days=3)
        invoice = status.mark_paid(_invoice("sent", SENT_AT), paid_at)
        assert invoice.status == "paid"
        assert invoice.paid_at == to_iso(paid_at)

    def test_overdue_invoice_can_be_paid(self):
        invoice = _invoice("sent", SENT_AT)
        late = SENT_AT + timedelta(days=30)
        assert status.runtime_stage(invoice, late) == "overdue"
        status.mark_paid(invoice, late)
        assert status.runtime_stage(invoice, late) == "paid"

    @pytest.mark.parametrize("current, target", [
        ("sent", "sent"),
        ("paid", "sent"),
        ("created", "paid"),
        ("paid", "paid"),
    ])
    def test_rejected_transitions(self, current, target):
        invoice = _invoice(current, SENT_AT if current != "created" else None)
        apply = status.mark_sent if target == "sent" else status.mark_paid
        with pytest.raises(InvalidTransitionError) as exc:
            apply(invoice, SENT_AT)
        assert exc.value.from_status == current
        assert exc.value.to_status == target
        assert invoice.status == current

    def test_transition_table(self):
        assert status.can_transition("created", "sent")
        assert status.can_transition("sent", "paid")
        assert not status.can_transition("paid", "created")
        assert not status.can_transition("bogus", "sent")
