"""Billing CLI commands, printed to a recording console."""

import asyncio

import pytest
from rich.console import Console

from interfaces.cli.billing import main


@pytest.fixture
def console():
    return Console(record=True, width=160)


@pytest.fixture
def invoice(service):
    async def scenario():
        customer = await service.create_customer("Autohaus Nord")
        [order] = await service.create_orders(customer.id, [{
            "license_plate": "M-AB 1", "vehicle_model": "Golf", "base_service_id": "premium",
            "addon_service_ids": ["polish"],
        }])
        return await service.bill_single_order(order.id)

    return asyncio.run(scenario())


def test_invoices_table(service, console, invoice):
    assert main(["invoices"], service=service, console=console) == 0
    out = console.export_text()
    assert "RE-2026-00001" in out
    assert "247.52" in out
    assert "Created" in out


def test_sent_then_paid(service, console, invoice):
    assert main(["sent", invoice.id], service=service, console=console) == 0
    assert main(["paid", invoice.id], service=service, console=console) == 0
    assert asyncio.run(service.get_invoice(invoice.id)).status == "paid"


def test_invalid_transition_exits_nonzero(service, console, invoice):
    assert main(["paid", invoice.id], service=service, console=console) == 1
    assert "cannot go from 'created' to 'paid'" in console.export_text()


def test_weekly_run(service, console):
    asyncio.run(service.create_customer("Idle Customer"))
    assert main(["weekly"], service=service, console=console) == 0
    out = console.export_text()
    assert "0 invoice(s) created" in out
    assert "Skipped" in out


def test_pdf_written(service, console, invoice, tmp_path):
    target = tmp_path / "out.pdf"
    assert main(["pdf", invoice.id, "-o", str(target)], service=service, console=console) == 0
    assert target.read_bytes().startswith(b"%PDF")


def test_summary_and_customers(service, console, invoice):
    assert main(["summary"], service=service, console=console) == 0
    assert main(["customers"], service=service, console=console) == 0
    out = console.export_text()
    assert "total invoices" in out
    assert "Autohaus Nord" in out
