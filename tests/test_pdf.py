"""Invoice PDF rendering."""

import asyncio

from core.models import CompanyProfile, Customer, Order
from tools.billing.invoice_builder import build_invoice
from tools.billing.pdf import program_legend, render_invoice_pdf


def _order(n, base, program):
    return Order(
        id=f"ord_{n}",
        customer_id="cust_1",
        license_plate=f"M-AB {n}",
        vin=f"WVWZZZ{n:05d}",
        program_number=program,
        base_service_id=base,
        addon_service_ids=["polish"] if n % 2 else [],
    )


def _invoice(count):
    orders = [_order(n, ("basic", "premium", "showroom")[n % 3], n % 3 + 1) for n in range(count)]
    return build_invoice(
        orders,
        Customer(id="cust_1", name="Autohaus Müller"),
        0,
        CompanyProfile(name="Auto-Anlage GmbH", address="Musterstraße 1", email="a@b.de"),
    )


class TestProgramLegend:

    def test_one_entry_per_program_sorted(self):
        legend = program_legend(_invoice(5))
        assert legend == [
            (1, "Interior & exterior cleaning"),
            (2, "Premium reconditioning"),
            (3, "Showroom complete package"),
        ]


class TestRender:

    def test_returns_pdf_bytes(self):
        data = render_invoice_pdf(_invoice(2), stage="created", recipient_address="Hauptstraße 5")
        assert isinstance(data, bytes)
        assert data.startswith(b"%PDF")

    def test_long_invoice_spans_pages(self):
        short = render_invoice_pdf(_invoice(1))
        long = render_invoice_pdf(_invoice(80))
        assert long.startswith(b"%PDF")
        assert len(long) > len(short)

    def test_service_renders_stored_invoice(self, service):
        async def scenario():
            customer = await service.create_customer("Autohaus Nord", address="Ring 1")
            [order] = await service.create_orders(customer.id, [{
                "license_plate": "M-AB 1", "vehicle_model": "Golf", "base_service_id": "basic",
            }])
            invoice = await service.bill_single_order(order.id)
            return await service.render_invoice_pdf(invoice.id)

        assert asyncio.run(scenario()).startswith(b"%PDF")
