"""Invoice construction: pricing, rounding, numbering."""

from datetime import datetime, timezone

import pytest

from core.models import CompanyProfile, Customer, InvoiceLineItem, Order, round_currency
from tools.billing.invoice_builder import (
    build_invoice,
    build_line_items,
    calc_totals,
    next_invoice_number,
)

NOW = datetime(2026, 3, 6, 9, 30, tzinfo=timezone.utc)
ISSUER = CompanyProfile(name="Auto-Anlage GmbH", address="Musterstrasse 1")
CUSTOMER = Customer(id="cust_1", name="Autohaus Nord")


def _order(order_id, base, addons=(), program=None, plate="M-AB 1", vin="WVW123"):
    return Order(
        id=order_id,
        customer_id=CUSTOMER.id,
        license_plate=plate,
        vehicle_model="Golf",
        vin=vin,
        program_number=program or 1,
        base_service_id=base,
        addon_service_ids=list(addons),
        completed_at="2026-03-05T10:00:00.000+00:00",
    )


class TestLineItems:

    def test_line_item_prices_base_plus_addons(self):
        item = InvoiceLineItem.from_order(_order("ord_a", "premium", ["polish"], program=2), 1)
        assert item.unit_net == 149.00
        assert item.extras_net == 59.00
        assert item.total_net == 208.00
        assert item.program_label == "Premium reconditioning"
        assert item.extras_labels == ["Paint polish"]
        assert item.program_number == 2

    def test_positions_follow_input_order(self):
        items = build_line_items([_order("ord_a", "basic"), _order("ord_b", "showroom")])
        assert [(i.position, i.order_id) for i in items] == [(1, "ord_a"), (2, "ord_b")]

    def test_unknown_service_prices_at_zero(self):
        item = InvoiceLineItem.from_order(_order("ord_x", "gone", ["also-gone"]), 1)
        assert item.total_net == 0.0
        assert item.program_label == "gone"


class TestTotals:

    def test_two_order_week(self):
        """premium+polish (208.00) and basic (79.00) at 19%."""
        items = build_line_items([_order("ord_a", "premium", ["polish"]), _order("ord_b", "basic")])
        totals = calc_totals(items, 0.19)
        assert totals == {"subtotal_net": 287.00, "tax_amount": 54.53, "total_gross": 341.53}

    def test_tax_rounds_half_up(self):
        assert round_currency(0.125) == 0.13
        assert round_currency(2.675) == 2.68
        assert round_currency("junk") == 0.0

    def test_gross_is_subtotal_plus_tax(self):
        items = build_line_items([_order(f"ord_{n}", "basic", ["ozone", "seal"]) for n in range(3)])
        totals = calc_totals(items, 0.19)
        assert totals["total_gross"] == round_currency(totals["subtotal_net"] + totals["tax_amount"])

    @pytest.mark.parametrize("rate", [0, 0.07, 0.19, 1])
    def test_totals_hold_at_any_valid_rate(self, rate):
        items = build_line_items([_order("ord_a", "premium", ["polish"]), _order("ord_b", "basic", ["ozone"])])
        totals = calc_totals(items, rate)
        assert totals["subtotal_net"] == round_currency(sum(i.total_net for i in items))
        assert totals["tax_amount"] == round_currency(totals["subtotal_net"] * rate)
        assert totals["total_gross"] == round_currency(totals["subtotal_net"] + totals["tax_amount"])

    def test_full_rate_doubles_the_net(self):
        totals = calc_totals(build_line_items([_order("ord_a", "basic")]), 1)
        assert totals == {"subtotal_net": 79.00, "tax_amount": 79.00, "total_gross": 158.00}


class TestNumbering:

    def test_first_number_of_year(self):
        assert next_invoice_number(0, 2026) == "RE-2026-00001"

    def test_sequence_is_count_plus_one(self):
        assert next_invoice_number(41, 2026, prefix="INV") == "INV-2026-00042"


class TestBuildInvoice:

    def test_build_invoice_fields(self):
        orders = [_order("ord_a", "premium", ["polish"]), _order("ord_b", "basic")]
        invoice = build_invoice(orders, CUSTOMER, 3, ISSUER, tax_rate=0.19, now=NOW)

        assert invoice.invoice_number == "RE-2026-00004"
        assert invoice.status == "created"
        assert invoice.order_ids == ["ord_a", "ord_b"]
        assert invoice.customer_name == "Autohaus Nord"
        assert invoice.subtotal_net == 287.00
        assert invoice.total_gross == 341.53
        assert invoice.created_at == "2026-03-06T09:30:00.000+00:00"
        assert invoice.sent_at is None and invoice.paid_at is None

    def test_issuer_is_a_snapshot(self):
        issuer = CompanyProfile(name="Old Name")
        invoice = build_invoice([_order("ord_a", "basic")], CUSTOMER, 0, issuer, now=NOW)
        issuer.name = "New Name"
        assert invoice.issuer.name == "Old Name"

    def test_invoice_id_can_be_supplied(self):
        invoice = build_invoice([_order("ord_a", "basic")], CUSTOMER, 0, ISSUER, now=NOW, invoice_id="inv_fixed")
        assert invoice.id == "inv_fixed"
        assert build_invoice([_order("ord_b", "basic")], CUSTOMER, 0, ISSUER, now=NOW).id.startswith("inv_")
