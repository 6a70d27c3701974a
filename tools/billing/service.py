"""
Billing Service — the operations the UI, REST API and CLI call.

Every write goes through BillingStore.mutate(), and every check that
guards a write (order exists, not billed yet, customer exists) runs
inside the same transform, so it sees the state the write will replace.
Values a transform produces (a new invoice, a batch result) are captured
by closure and then looked up again in the committed state.

Usage:
    service = BillingService.from_config()
    customer = await service.create_customer("Autohaus Nord")
    await service.create_orders(customer.id, [{"license_plate": "M-AB 123", ...}])
    result = await service.bill_weekly([customer.id])
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from core.config import get_config
from core.errors import NotFoundError, ValidationError
from core.models import (
    DEFAULT_INVOICE_PREFIX,
    DEFAULT_TAX_RATE,
    ORDER_STATUSES,
    UNKNOWN_CUSTOMER_NAME,
    CompanyProfile,
    Customer,
    Database,
    Invoice,
    Order,
    parse_timestamp,
    to_iso,
    utc_now,
)
from core.store import BillingStore
from tools.billing import catalog, status
from tools.billing.invoice_builder import build_invoice
from tools.billing.pdf import render_invoice_pdf
from tools.billing.weekly import WeeklyBillingResult, apply_weekly_billing, resolve_week_range

logger = logging.getLogger("recon.billing")

# Order fields a caller may edit after creation. invoice_id is never editable.
EDITABLE_ORDER_FIELDS = {
    "customer_id", "license_plate", "vehicle_model", "vin", "program_number",
    "base_service_id", "addon_service_ids", "notes", "status", "completed_at",
}

COMPANY_FIELDS = ("name", "address", "email", "phone")


class BillingService:
    """Customers, orders and invoices on top of one BillingStore.

    Args:
        store:                The shared document store.
        tax_rate:             VAT rate applied to new invoices (0.19 = 19%).
        payment_window_days:  Days after sending before an invoice is overdue.
        invoice_prefix:       Invoice number prefix (RE-2026-00001).
        clock:                Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: BillingStore,
        tax_rate: float = DEFAULT_TAX_RATE,
        payment_window_days: int = status.PAYMENT_WINDOW_DAYS,
        invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.tax_rate = tax_rate
        self.payment_window_days = payment_window_days
        self.invoice_prefix = invoice_prefix
        self._clock = clock
        logger.info(
            "BillingService initialized (tax_rate=%.2f, payment_window=%dd, prefix=%s)",
            tax_rate, payment_window_days, invoice_prefix,
        )

    @classmethod
    def from_config(cls, config=None) -> "BillingService":
        """Build the service (and its store) from settings.toml / env."""
        config = config or get_config()
        company = CompanyProfile.from_dict(config.company.to_dict())
        store = BillingStore(
            path=config.store.path,
            company=company,
            tax_rate=config.billing.tax_rate,
            invoice_prefix=config.billing.invoice_prefix,
        )
        return cls(
            store,
            tax_rate=config.billing.tax_rate,
            payment_window_days=config.billing.payment_window_days,
            invoice_prefix=config.billing.invoice_prefix,
        )

    def now(self) -> datetime:
        return self._clock()

    # -------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------

    async def create_customer(
        self,
        name: str,
        short_name: str = "",
        address: str = "",
        email: str = "",
        phone: str = "",
    ) -> Customer:
        """Register a new customer. Name is required."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Customer name is required")

        customer = Customer(
            id=self.store.new_customer_id(),
            name=name,
            short_name=(short_name or "").strip(),
            address=(address or "").strip(),
            email=(email or "").strip(),
            phone=(phone or "").strip(),
            created_at=to_iso(self.now()),
        )

        def add(db: Database):
            db.customers.append(customer)

        await self.store.mutate(add)
        logger.info("Customer created: %s (%s)", customer.name, customer.id)
        return customer

    async def list_customers(self) -> list[Customer]:
        db = await self.store.read()
        return list(db.customers)

    # -------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------

    async def create_orders(
        self,
        customer_id: str,
        lines: list[dict],
        completed_at: Any = None,
    ) -> list[Order]:
        """Create one completed order per line for a customer.

        Each line needs license_plate, vehicle_model and base_service_id;
        program_number defaults from the base service when omitted.
        completed_at applies to every line (now when missing or invalid).
        """
        if not customer_id:
            raise ValidationError("Customer is required")
        if not lines:
            raise ValidationError("No order lines given")

        now = self.now()
        completed = parse_timestamp(completed_at) or now
        orders = [
            self._order_from_line(line, index, customer_id, now, completed)
            for index, line in enumerate(lines)
        ]

        def add(db: Database):
            if db.find_customer(customer_id) is None:
                raise NotFoundError("customer", customer_id)
            db.orders.extend(orders)

        await self.store.mutate(add)
        logger.info("Created %d order(s) for customer %s", len(orders), customer_id)
        return orders

    def _order_from_line(
        self,
        line: dict,
        index: int,
        customer_id: str,
        now: datetime,
        completed: datetime,
    ) -> Order:
        if not isinstance(line, dict):
            raise ValidationError(f"Line {index + 1}: expected an object")

        missing = [
            label for key, label in (
                ("license_plate", "license plate"),
                ("vehicle_model", "vehicle model"),
                ("base_service_id", "base service"),
            )
            if not str(line.get(key) or "").strip()
        ]
        if missing:
            raise ValidationError(f"Line {index + 1}: missing {', '.join(missing)}")

        base_service_id = str(line["base_service_id"]).strip()
        addon_ids = line.get("addon_service_ids") or []
        try:
            _check_services(base_service_id, addon_ids)
            program_number = _check_program_number(line.get("program_number"), base_service_id)
        except ValidationError as e:
            raise ValidationError(f"Line {index + 1}: {e}") from None

        return Order(
            id=self.store.new_order_id(),
            customer_id=customer_id,
            license_plate=str(line["license_plate"]).strip().upper(),
            vehicle_model=str(line["vehicle_model"]).strip(),
            vin=str(line.get("vin") or "").strip().upper(),
            program_number=program_number,
            base_service_id=base_service_id,
            addon_service_ids=[str(a) for a in addon_ids],
            notes=str(line.get("notes") or ""),
            status="completed",
            created_at=to_iso(now),
            completed_at=to_iso(completed),
        )

    async def update_order(self, order_id: str, fields: dict) -> Order:
        """Edit an order's fields. invoice_id can never be changed here."""
        unknown = set(fields) - EDITABLE_ORDER_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        now = self.now()

        def edit(db: Database):
            order = db.find_order(order_id)
            if order is None:
                raise NotFoundError("order", order_id)
            _apply_order_edit(db, order, fields, now)

        committed = await self.store.mutate(edit)
        logger.info("Order updated: %s (%s)", order_id, ", ".join(sorted(fields)) or "no fields")
        return committed.find_order(order_id)

    async def get_order(self, order_id: str) -> Order:
        db = await self.store.read()
        order = db.find_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    async def list_orders(self) -> list[dict]:
        """Orders newest first, each as a dict with the customer's name."""
        db = await self.store.read()
        names = {c.id: c.name for c in db.customers}
        orders = sorted(db.orders, key=lambda o: o.created_at, reverse=True)
        return [
            {**o.to_dict(), "customer_name": names.get(o.customer_id, UNKNOWN_CUSTOMER_NAME)}
            for o in orders
        ]

    # -------------------------------------------------------------------
    # Billing
    # -------------------------------------------------------------------

    async def bill_single_order(self, order_id: str) -> Invoice:
        """Invoice one order on its own.

        Idempotent: an order that already carries an invoice returns
        that invoice instead of creating a second one.
        """
        now = self.now()
        outcome: dict[str, Any] = {}

        def bill(db: Database):
            order = db.find_order(order_id)
            if order is None:
                raise NotFoundError("order", order_id)
            if order.is_billed:
                if db.find_invoice(order.invoice_id) is None:
                    raise NotFoundError("invoice", order.invoice_id)
                outcome["invoice_id"] = order.invoice_id
                outcome["created"] = False
                return

            customer = db.find_customer(order.customer_id) or Customer(
                id=order.customer_id, name=UNKNOWN_CUSTOMER_NAME
            )
            invoice = build_invoice(
                [order], customer, len(db.invoices), db.company_profile,
                tax_rate=self.tax_rate, prefix=self.invoice_prefix, now=now,
                invoice_id=self.store.new_invoice_id(),
            )
            order.status = "completed"
            order.completed_at = order.completed_at or to_iso(now)
            order.invoice_id = invoice.id
            db.invoices.append(invoice)
            outcome["invoice_id"] = invoice.id
            outcome["created"] = True

        committed = await self.store.mutate(bill)
        invoice = committed.find_invoice(outcome["invoice_id"])
        if outcome["created"]:
            logger.info(
                "Invoice created: %s for order %s (%.2f gross)",
                invoice.invoice_number, order_id, invoice.total_gross,
            )
        else:
            logger.info("Order %s already billed on %s", order_id, invoice.invoice_number)
        return invoice

    async def bill_weekly(
        self,
        customer_ids: Optional[Iterable[str]] = None,
        week_start: Any = None,
        week_end: Any = None,
    ) -> WeeklyBillingResult:
        """One invoice per customer over the week's completed, unbilled orders.

        No customer ids means every customer. No range means the current
        ISO week (UTC). The whole batch is one store mutation.
        """
        now = self.now()
        week = resolve_week_range(week_start, week_end, now=now)
        requested = [c.strip() for c in (customer_ids or []) if isinstance(c, str) and c.strip()]
        outcome: dict[str, WeeklyBillingResult] = {}

        def bill(db: Database):
            ids = requested or [c.id for c in db.customers]
            outcome["result"] = apply_weekly_billing(
                db, ids, week,
                tax_rate=self.tax_rate, prefix=self.invoice_prefix, now=now,
                new_invoice_id=self.store.new_invoice_id,
            )

        committed = await self.store.mutate(bill)
        result = outcome["result"]
        result.invoices = [committed.find_invoice(inv.id) for inv in result.invoices]
        logger.info(
            "Weekly billing %s..%s: %d invoice(s), %d skipped",
            week.start.date(), week.end.date(),
            len(result.invoices), len(result.skipped_customer_ids),
        )
        return result

    # -------------------------------------------------------------------
    # Invoice status
    # -------------------------------------------------------------------

    async def mark_invoice_sent(self, invoice_id: str) -> list[Invoice]:
        """created → sent. Returns the updated invoice list."""
        return await self._transition(invoice_id, status.mark_sent, "sent")

    async def mark_invoice_paid(self, invoice_id: str) -> list[Invoice]:
        """sent/overdue → paid. Returns the updated invoice list."""
        return await self._transition(invoice_id, status.mark_paid, "paid")

    async def _transition(self, invoice_id: str, apply, target: str) -> list[Invoice]:
        now = self.now()

        def change(db: Database):
            invoice = db.find_invoice(invoice_id)
            if invoice is None:
                raise NotFoundError("invoice", invoice_id)
            apply(invoice, now)

        committed = await self.store.mutate(change)
        logger.info("Invoice %s marked %s", invoice_id, target)
        return list(committed.invoices)

    # -------------------------------------------------------------------
    # Invoice reads
    # -------------------------------------------------------------------

    async def get_invoice(self, invoice_id: str) -> Invoice:
        db = await self.store.read()
        invoice = db.find_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    async def list_invoices(self) -> list[Invoice]:
        """All invoices, newest first."""
        db = await self.store.read()
        return sorted(db.invoices, key=lambda i: i.created_at, reverse=True)

    def runtime_stage(self, invoice: Invoice, now: Optional[datetime] = None) -> str:
        return status.runtime_stage(invoice, now or self.now(), self.payment_window_days)

    def invoice_view(self, invoice: Invoice, now: Optional[datetime] = None) -> dict:
        """Invoice dict plus its derived stage and due date, for display."""
        now = now or self.now()
        stage = self.runtime_stage(invoice, now)
        due = status.due_at(invoice, self.payment_window_days)
        return {
            **invoice.to_dict(),
            "stage": stage,
            "stage_label": status.stage_label(stage),
            "due_at": to_iso(due) if due else None,
        }

    async def invoice_summary(self, now: Optional[datetime] = None) -> dict:
        """Counts per runtime stage plus open, overdue and paid gross totals."""
        now = now or self.now()
        invoices = (await self.store.read()).invoices
        counts = {stage: 0 for stage in status.RUNTIME_STAGES}
        totals = {stage: 0.0 for stage in status.RUNTIME_STAGES}
        for invoice in invoices:
            stage = self.runtime_stage(invoice, now)
            counts[stage] += 1
            totals[stage] += invoice.total_gross
        return {
            "total_invoices": len(invoices),
            **counts,
            "outstanding_total": round(totals["sent"] + totals["overdue"], 2),
            "overdue_total": round(totals["overdue"], 2),
            "paid_total": round(totals["paid"], 2),
        }

    async def render_invoice_pdf(self, invoice_id: str) -> bytes:
        """Render a stored invoice as PDF bytes."""
        db = await self.store.read()
        invoice = db.find_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        customer = db.find_customer(invoice.customer_id)
        return render_invoice_pdf(
            invoice,
            stage=self.runtime_stage(invoice),
            recipient_address=customer.address if customer else "",
        )

    # -------------------------------------------------------------------
    # Catalog & company profile
    # -------------------------------------------------------------------

    @staticmethod
    def catalog() -> dict:
        return {
            "base_services": [s.to_dict() for s in catalog.base_services()],
            "addon_services": [s.to_dict() for s in catalog.addon_services()],
        }

    async def company_profile(self) -> CompanyProfile:
        return (await self.store.read()).company_profile

    async def update_company_profile(self, **fields) -> CompanyProfile:
        """Change the issuer profile. Existing invoices keep their snapshot."""
        unknown = set(fields) - set(COMPANY_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown company fields: {', '.join(sorted(unknown))}")
        if "name" in fields and not str(fields["name"] or "").strip():
            raise ValidationError("Company name cannot be empty")

        def edit(db: Database):
            for key, value in fields.items():
                if value is not None:
                    setattr(db.company_profile, key, str(value).strip())

        committed = await self.store.mutate(edit)
        logger.info("Company profile updated (%s)", ", ".join(sorted(fields)))
        return committed.company_profile


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _check_services(base_service_id: str, addon_ids) -> None:
    if not catalog.is_base_service(base_service_id):
        raise ValidationError(f"Unknown base service '{base_service_id}'")
    if not isinstance(addon_ids, list):
        raise ValidationError("addon_service_ids must be a list")
    for addon_id in addon_ids:
        if not catalog.is_addon_service(str(addon_id)):
            raise ValidationError(f"Unknown add-on service '{addon_id}'")


def _check_program_number(value: Any, base_service_id: str) -> int:
    if value is None or value == "":
        return catalog.infer_program_number(base_service_id)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not catalog.is_valid_program_number(value):
        raise ValidationError(f"Invalid program number {value!r} (expected 1-6)")
    return value


def _apply_order_edit(db: Database, order: Order, fields: dict, now: datetime) -> None:
    """Apply validated edits to an order in place."""
    if "customer_id" in fields and fields["customer_id"] and fields["customer_id"] != order.customer_id:
        customer_id = str(fields["customer_id"])
        if order.is_billed:
            raise ValidationError("A billed order cannot move to another customer")
        if db.find_customer(customer_id) is None:
            raise NotFoundError("customer", customer_id)
        order.customer_id = customer_id

    for key in ("license_plate", "vehicle_model", "vin"):
        if key in fields and fields[key] is not None:
            value = str(fields[key]).strip()
            if not value and key != "vin":
                raise ValidationError(f"{key.replace('_', ' ').capitalize()} cannot be empty")
            setattr(order, key, value.upper() if key in ("license_plate", "vin") else value)

    if fields.get("base_service_id") or "addon_service_ids" in fields:
        base = str(fields.get("base_service_id") or order.base_service_id)
        addons = fields.get("addon_service_ids")
        addons = order.addon_service_ids if addons is None else addons
        _check_services(base, addons)
        order.base_service_id = base
        order.addon_service_ids = [str(a) for a in addons]

    if fields.get("program_number") is not None:
        order.program_number = _check_program_number(fields["program_number"], order.base_service_id)

    if isinstance(fields.get("notes"), str):
        order.notes = fields["notes"]

    if "completed_at" in fields and fields["completed_at"] is not None:
        completed = parse_timestamp(fields["completed_at"])
        if completed is None:
            raise ValidationError(f"Invalid completed_at: {fields['completed_at']!r}")
        order.completed_at = to_iso(completed)

    if fields.get("status") is not None:
        new_status = fields["status"]
        if new_status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid order status {new_status!r}")
        if new_status == "new" and order.is_billed:
            raise ValidationError("A billed order cannot be reopened")
        order.status = new_status

    if order.status == "completed" and not order.completed_at:
        order.completed_at = to_iso(now)
