"""
Invoice PDF rendering (fpdf2).

Pure presentation over a finalized Invoice: every amount printed comes
from the stored invoice, nothing is recomputed. Layout is A4 portrait:

- header with invoice number, issuer and recipient, date and status
- line-item table (position, program, VIN / plate, unit net, extras net,
  total net), header repeated on every page
- totals block (net, VAT, gross)
- program legend: one entry per program number used on the invoice
"""

import logging
from typing import Optional

from fpdf import FPDF

from core.models import Invoice, parse_timestamp

logger = logging.getLogger("recon.billing.pdf")

# A4 with 10mm margins → 190mm usable width
_COLUMNS = (
    ("Pos", 12, "C"),
    ("Prog", 14, "C"),
    ("VIN / Plate", 74, "L"),
    ("Unit net", 30, "R"),
    ("Extras net", 30, "R"),
    ("Total net", 30, "R"),
)
_ROW_HEIGHT = 6
_PAGE_BOTTOM = 270  # mm; start a new page below this


def _safe(text) -> str:
    """Core PDF fonts are Latin-1 only; replace anything outside it."""
    return str(text or "").encode("latin-1", "replace").decode("latin-1")


def _money(amount: float) -> str:
    return f"{amount:.2f} EUR"


def program_legend(invoice: Invoice) -> list[tuple[int, str]]:
    """(program number, label) pairs used on the invoice, sorted by number."""
    legend: dict[int, str] = {}
    for item in invoice.line_items:
        legend[item.program_number] = item.program_label
    return sorted(legend.items())


class _InvoicePDF(FPDF):
    """FPDF with a footer carrying the invoice number and page count."""

    def __init__(self, invoice_number: str):
        super().__init__(orientation="P", unit="mm", format="A4")
        self._invoice_number = invoice_number

    def footer(self):
        self.set_y(-12)
        self.set_font("Helvetica", "I", 8)
        self.cell(0, 5, _safe(f"{self._invoice_number}  -  Page {self.page_no()}/{{nb}}"), align="C")


def render_invoice_pdf(
    invoice: Invoice,
    stage: Optional[str] = None,
    recipient_address: str = "",
) -> bytes:
    """Render an invoice to PDF and return the document bytes.

    Args:
        invoice:            The stored invoice.
        stage:              Runtime stage to print (defaults to stored status).
        recipient_address:  Customer address, if known.
    """
    pdf = _InvoicePDF(invoice.invoice_number)
    pdf.set_margins(10, 10, 10)
    pdf.set_auto_page_break(auto=False)

    created = parse_timestamp(invoice.created_at)
    date_text = created.strftime("%d.%m.%Y") if created else ""
    status_text = (stage or invoice.status).upper()

    def page_header():
        pdf.add_page()
        pdf.set_font("Helvetica", "B", 20)
        pdf.cell(120, 10, "INVOICE")
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(70, 10, _safe(invoice.invoice_number), align="R", new_x="LMARGIN", new_y="NEXT")
        pdf.ln(2)

        pdf.set_font("Helvetica", "B", 10)
        pdf.cell(95, 6, "From")
        pdf.cell(95, 6, "Bill To", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "", 10)
        pdf.cell(95, 5, _safe(invoice.issuer.name))
        pdf.cell(95, 5, _safe(invoice.customer_name), new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "", 9)
        pdf.cell(95, 5, _safe(invoice.issuer.address))
        pdf.cell(95, 5, _safe(recipient_address), new_x="LMARGIN", new_y="NEXT")
        contact = "  |  ".join(x for x in (invoice.issuer.email, invoice.issuer.phone) if x)
        pdf.cell(95, 5, _safe(contact), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(3)

        pdf.cell(95, 5, f"Date: {date_text}")
        pdf.cell(95, 5, f"Status: {status_text}", new_x="LMARGIN", new_y="NEXT")
        pdf.ln(4)
        table_header()

    def table_header():
        pdf.set_font("Helvetica", "B", 9)
        for title, width, align in _COLUMNS:
            pdf.cell(width, 7, title, border="B", align=align)
        pdf.ln(7)
        pdf.set_font("Helvetica", "", 9)

    page_header()

    for item in invoice.line_items:
        if pdf.get_y() + _ROW_HEIGHT > _PAGE_BOTTOM:
            page_header()
        vin_plate = f"{item.vin or '-'} / {item.license_plate or '-'}"
        values = (
            str(item.position),
            str(item.program_number),
            _safe(vin_plate)[:40],
            _money(item.unit_net),
            _money(item.extras_net),
            _money(item.total_net),
        )
        for (_, width, align), value in zip(_COLUMNS, values):
            pdf.cell(width, _ROW_HEIGHT, value, align=align)
        pdf.ln(_ROW_HEIGHT)

    # Totals block needs ~30mm
    if pdf.get_y() + 30 > _PAGE_BOTTOM:
        page_header()
    pdf.ln(3)
    pdf.set_font("Helvetica", "B", 10)
    pdf.cell(130, 6, "Subtotal (net):", align="R")
    pdf.cell(60, 6, _money(invoice.subtotal_net), align="R", new_x="LMARGIN", new_y="NEXT")
    pdf.cell(130, 6, f"VAT ({round(invoice.tax_rate * 100)}%):", align="R")
    pdf.cell(60, 6, _money(invoice.tax_amount), align="R", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", "B", 11)
    pdf.cell(130, 7, "Total (gross):", align="R")
    pdf.cell(60, 7, _money(invoice.total_gross), align="R", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(6)

    pdf.set_font("Helvetica", "B", 10)
    pdf.cell(0, 6, "Program legend", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", "", 9)
    for number, label in program_legend(invoice):
        if pdf.get_y() + 5 > _PAGE_BOTTOM:
            pdf.add_page()
        pdf.cell(0, 5, _safe(f"{number}: {label}"), new_x="LMARGIN", new_y="NEXT")

    data = bytes(pdf.output())
    logger.info("Invoice PDF rendered: %s (%d pages, %d bytes)",
                invoice.invoice_number, pdf.page_no(), len(data))
    return data
