"""
RECON Domain Records

Dataclasses for the single shared billing document: company profile,
customers, orders, invoices (with embedded line items), and the
Database aggregate that holds them all.

Every record has to_dict() for persistence and a lenient from_dict()
that accepts partial, legacy (camelCase) or malformed shapes and
degrades to defaults instead of raising. The store runs every read
through Database.from_dict, so business logic only ever sees the
canonical form.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from tools.billing.catalog import (
    infer_program_number,
    is_valid_program_number,
    label_of,
    price_of,
)

logger = logging.getLogger("recon.models")


DEFAULT_TAX_RATE = 0.19
DEFAULT_INVOICE_PREFIX = "RE"

ORDER_STATUSES = ("new", "completed")
INVOICE_STATUSES = ("created", "sent", "paid")

UNKNOWN_CUSTOMER_NAME = "Unknown"


# ---------------------------------------------------------------------------
# Helpers — ids, time, money
# ---------------------------------------------------------------------------

def new_id(prefix: str) -> str:
    """Globally unique opaque id, prefixed by kind (cust_, ord_, inv_)."""
    return f"{prefix}_{uuid.uuid4()}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize an aware datetime as a UTC ISO-8601 string with milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are read as UTC. Returns None for empty or unparseable
    input.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_timestamp(value: Any) -> Optional[str]:
    dt = parse_timestamp(value)
    return to_iso(dt) if dt else None


def round_currency(value: Any) -> float:
    """Round to 2 decimals, half-up on the decimal representation."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return 0.0
    if not amount.is_finite():
        return 0.0
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _pick(source: dict, *keys: str, default: Any = None) -> Any:
    """First non-None value among keys (snake_case first, then legacy camelCase)."""
    for key in keys:
        value = source.get(key)
        if value is not None:
            return value
    return default


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return None


def _finite_number(value: Any) -> bool:
    return _number(value) is not None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _to_program_number(value: Any, base_service_id: str) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if is_valid_program_number(value):
        return value
    return infer_program_number(base_service_id)


# ---------------------------------------------------------------------------
# CompanyProfile
# ---------------------------------------------------------------------------

@dataclass
class CompanyProfile:
    """Issuer identity printed on invoices."""
    name: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, value: Any, default: Optional["CompanyProfile"] = None) -> "CompanyProfile":
        default = default or cls()
        source = _as_dict(value)
        return cls(
            name=_text(source.get("name")) or default.name,
            address=_text(source.get("address")) or default.address,
            email=_text(source.get("email")) or default.email,
            phone=_text(source.get("phone")) or default.phone,
        )


def _issuer_snapshot(value: Any, company: CompanyProfile) -> CompanyProfile:
    """The issuer stored on an invoice, kept as written.

    Blank fields stay blank; only invoices saved before issuers were
    snapshotted (no issuer at all) take the current company profile.
    """
    if isinstance(value, dict):
        return CompanyProfile(
            name=_text(value.get("name")),
            address=_text(value.get("address")),
            email=_text(value.get("email")),
            phone=_text(value.get("phone")),
        )
    return CompanyProfile(**company.to_dict())


# ---------------------------------------------------------------------------
# Customer
# ---------------------------------------------------------------------------

@dataclass
class Customer:
    """A B2B customer (dealership, fleet operator)."""
    id: str
    name: str
    short_name: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "short_name": self.short_name,
            "address": self.address,
            "email": self.email,
            "phone": self.phone,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, value: Any) -> "Customer":
        source = _as_dict(value)
        return cls(
            id=_text(source.get("id")) or new_id("cust"),
            name=_text(source.get("name")),
            short_name=_text(_pick(source, "short_name", "shortName", default="")),
            address=_text(source.get("address")),
            email=_text(source.get("email")),
            phone=_text(source.get("phone")),
            created_at=normalize_timestamp(_pick(source, "created_at", "createdAt")) or to_iso(utc_now()),
        )


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------

@dataclass
class Order:
    """One vehicle worked on for a customer."""
    id: str
    customer_id: str
    license_plate: str = ""
    vehicle_model: str = ""
    vin: str = ""
    program_number: int = 1
    base_service_id: str = ""
    addon_service_ids: list[str] = field(default_factory=list)
    notes: str = ""
    status: str = "completed"
    created_at: str = ""
    completed_at: Optional[str] = None
    invoice_id: Optional[str] = None

    @property
    def is_billed(self) -> bool:
        return bool(self.invoice_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "license_plate": self.license_plate,
            "vehicle_model": self.vehicle_model,
            "vin": self.vin,
            "program_number": self.program_number,
            "base_service_id": self.base_service_id,
            "addon_service_ids": list(self.addon_service_ids),
            "notes": self.notes,
            "status": self.status,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "invoice_id": self.invoice_id,
        }

    @classmethod
    def from_dict(cls, value: Any) -> "Order":
        source = _as_dict(value)
        base_service_id = _text(_pick(source, "base_service_id", "baseServiceId", default=""))
        addons = _pick(source, "addon_service_ids", "addonServiceIds")
        return cls(
            id=_text(source.get("id")) or new_id("ord"),
            customer_id=_text(_pick(source, "customer_id", "customerId", default="")),
            license_plate=_text(_pick(source, "license_plate", "licensePlate", default="")).upper(),
            vehicle_model=_text(_pick(source, "vehicle_model", "vehicleModel", default="")),
            vin=_text(source.get("vin")).upper(),
            program_number=_to_program_number(
                _pick(source, "program_number", "programNumber"), base_service_id
            ),
            base_service_id=base_service_id,
            addon_service_ids=[str(a) for a in addons] if isinstance(addons, list) else [],
            notes=_text(source.get("notes")),
            status="new" if source.get("status") == "new" else "completed",
            created_at=normalize_timestamp(_pick(source, "created_at", "createdAt")) or to_iso(utc_now()),
            completed_at=normalize_timestamp(_pick(source, "completed_at", "completedAt")),
            invoice_id=_text(_pick(source, "invoice_id", "invoiceId")) or None,
        )


# ---------------------------------------------------------------------------
# InvoiceLineItem
# ---------------------------------------------------------------------------

@dataclass
class InvoiceLineItem:
    """One billed order on an invoice. Amounts are net and already rounded."""
    position: int
    order_id: str
    program_number: int
    program_label: str
    vin: str
    license_plate: str
    unit_net: float
    extras_net: float
    total_net: float
    extras_labels: list[str] = field(default_factory=list)

    @classmethod
    def from_order(cls, order: Order, position: int) -> "InvoiceLineItem":
        """Price one order: base service + sum of add-ons, each stage rounded."""
        unit_net = price_of(order.base_service_id)
        extras_net = sum(price_of(addon_id) for addon_id in order.addon_service_ids)
        return cls(
            position=position,
            order_id=order.id,
            program_number=order.program_number,
            program_label=label_of(order.base_service_id),
            vin=order.vin,
            license_plate=order.license_plate,
            unit_net=round_currency(unit_net),
            extras_net=round_currency(extras_net),
            total_net=round_currency(unit_net + extras_net),
            extras_labels=[label_of(addon_id) for addon_id in order.addon_service_ids],
        )

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "order_id": self.order_id,
            "program_number": self.program_number,
            "program_label": self.program_label,
            "vin": self.vin,
            "license_plate": self.license_plate,
            "unit_net": self.unit_net,
            "extras_net": self.extras_net,
            "total_net": self.total_net,
            "extras_labels": list(self.extras_labels),
        }

    @classmethod
    def from_dict(cls, value: Any, index: int, linked: Optional[Order] = None) -> "InvoiceLineItem":
        source = _as_dict(value)
        unit_net = round_currency(_number(_pick(source, "unit_net", "unitNet")) or 0.0)
        extras_net = round_currency(_number(_pick(source, "extras_net", "extrasNet")) or 0.0)
        total = _number(_pick(source, "total_net", "totalNet"))
        labels = _pick(source, "extras_labels", "extrasLabels")
        position = _pick(source, "position")
        return cls(
            position=int(position) if _finite_number(position) else index + 1,
            order_id=_text(_pick(source, "order_id", "orderId")) or (linked.id if linked else ""),
            program_number=_to_program_number(
                _pick(source, "program_number", "programNumber"),
                linked.base_service_id if linked else "",
            ),
            program_label=_text(_pick(source, "program_label", "programLabel"))
            or (linked.base_service_id if linked else ""),
            vin=_text(source.get("vin")) or (linked.vin if linked else ""),
            license_plate=_text(_pick(source, "license_plate", "licensePlate"))
            or (linked.license_plate if linked else ""),
            unit_net=unit_net,
            extras_net=extras_net,
            total_net=round_currency(total if total is not None else unit_net + extras_net),
            extras_labels=[str(x) for x in labels] if isinstance(labels, list) else [],
        )


# ---------------------------------------------------------------------------
# Invoice
# ---------------------------------------------------------------------------

@dataclass
class Invoice:
    """An invoice over one or more orders of a single customer.

    status is the stored state (created / sent / paid). "overdue" is
    never stored, see tools.billing.status.runtime_stage().
    """
    id: str
    invoice_number: str
    issuer: CompanyProfile
    customer_id: str
    customer_name: str
    order_ids: list[str]
    line_items: list[InvoiceLineItem]
    subtotal_net: float
    tax_rate: float
    tax_amount: float
    total_gross: float
    status: str = "created"
    created_at: str = ""
    sent_at: Optional[str] = None
    paid_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "issuer": self.issuer.to_dict(),
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "order_ids": list(self.order_ids),
            "line_items": [item.to_dict() for item in self.line_items],
            "subtotal_net": self.subtotal_net,
            "tax_rate": self.tax_rate,
            "tax_amount": self.tax_amount,
            "total_gross": self.total_gross,
            "status": self.status,
            "created_at": self.created_at,
            "sent_at": self.sent_at,
            "paid_at": self.paid_at,
        }

    @classmethod
    def from_dict(
        cls,
        value: Any,
        *,
        index: int,
        orders_by_id: dict[str, Order],
        customers_by_id: dict[str, Customer],
        company: CompanyProfile,
        tax_rate: float = DEFAULT_TAX_RATE,
        invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
    ) -> "Invoice":
        source = _as_dict(value)
        order_ids_raw = _pick(source, "order_ids", "orderIds")
        order_ids = [str(o) for o in order_ids_raw] if isinstance(order_ids_raw, list) else []
        linked = [orders_by_id[o] for o in order_ids if o in orders_by_id]

        raw_items = _pick(source, "line_items", "lineItems")
        raw_items = raw_items if isinstance(raw_items, list) else None
        has_new_format = raw_items is not None and all(
            _number(_pick(_as_dict(item), "total_net", "totalNet")) is not None for item in raw_items
        )
        if has_new_format:
            line_items = [
                InvoiceLineItem.from_dict(item, i, linked[i] if i < len(linked) else None)
                for i, item in enumerate(raw_items)
            ]
        else:
            line_items = [InvoiceLineItem.from_order(order, i + 1) for i, order in enumerate(linked)]

        subtotal = _number(_pick(source, "subtotal_net", "subtotalNet", "subtotal"))
        subtotal_net = round_currency(
            subtotal if subtotal is not None else sum(item.total_net for item in line_items)
        )
        rate = _number(_pick(source, "tax_rate", "taxRate"))
        rate = rate if rate is not None else tax_rate
        tax = _number(_pick(source, "tax_amount", "taxAmount"))
        tax_amount = round_currency(tax if tax is not None else subtotal_net * rate)
        gross = _number(_pick(source, "total_gross", "totalGross", "total"))
        total_gross = round_currency(gross if gross is not None else subtotal_net + tax_amount)

        customer_id = _text(_pick(source, "customer_id", "customerId", default=""))
        customer = customers_by_id.get(customer_id)
        created_at = normalize_timestamp(_pick(source, "created_at", "createdAt")) or to_iso(utc_now())

        status = source.get("status")
        if status == "open":
            status = "sent"
        elif status not in INVOICE_STATUSES:
            status = "created"

        invoice_number = _text(_pick(source, "invoice_number", "invoiceNumber"))
        if not invoice_number:
            year = parse_timestamp(created_at).year
            invoice_number = f"{invoice_prefix}-{year}-{index + 1:05d}"

        return cls(
            id=_text(source.get("id")) or new_id("inv"),
            invoice_number=invoice_number,
            issuer=_issuer_snapshot(source.get("issuer"), company),
            customer_id=customer_id,
            customer_name=_text(_pick(source, "customer_name", "customerName"))
            or (customer.name if customer else UNKNOWN_CUSTOMER_NAME),
            order_ids=order_ids,
            line_items=line_items,
            subtotal_net=subtotal_net,
            tax_rate=rate,
            tax_amount=tax_amount,
            total_gross=total_gross,
            status=status,
            created_at=created_at,
            sent_at=normalize_timestamp(_pick(source, "sent_at", "sentAt")),
            paid_at=normalize_timestamp(_pick(source, "paid_at", "paidAt")),
        )


# ---------------------------------------------------------------------------
# Database — the aggregate root
# ---------------------------------------------------------------------------

@dataclass
class Database:
    """The whole shared document. Mutated only through BillingStore.mutate()."""
    company_profile: CompanyProfile
    customers: list[Customer] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)

    def find_customer(self, customer_id: str) -> Optional[Customer]:
        return next((c for c in self.customers if c.id == customer_id), None)

    def find_order(self, order_id: str) -> Optional[Order]:
        return next((o for o in self.orders if o.id == order_id), None)

    def find_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return next((i for i in self.invoices if i.id == invoice_id), None)

    def to_dict(self) -> dict:
        return {
            "company_profile": self.company_profile.to_dict(),
            "customers": [c.to_dict() for c in self.customers],
            "orders": [o.to_dict() for o in self.orders],
            "invoices": [i.to_dict() for i in self.invoices],
        }

    @classmethod
    def empty(cls, company: Optional[CompanyProfile] = None) -> "Database":
        return cls(company_profile=CompanyProfile(**(company or CompanyProfile()).to_dict()))

    @classmethod
    def from_dict(
        cls,
        raw: Any,
        *,
        company: Optional[CompanyProfile] = None,
        tax_rate: float = DEFAULT_TAX_RATE,
        invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
    ) -> "Database":
        """Normalize a raw JSON document into the canonical in-memory form.

        Never raises: anything unreadable degrades to defaults.
        """
        company = company or CompanyProfile()
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("Store document is not an object (%s), using empty database",
                               type(raw).__name__)
            return cls.empty(company)

        profile = CompanyProfile.from_dict(
            _pick(raw, "company_profile", "companyProfile"), default=company
        )
        customers_raw = raw.get("customers")
        orders_raw = raw.get("orders")
        invoices_raw = raw.get("invoices")

        customers = [Customer.from_dict(c) for c in customers_raw] if isinstance(customers_raw, list) else []
        orders = [Order.from_dict(o) for o in orders_raw] if isinstance(orders_raw, list) else []

        orders_by_id = {o.id: o for o in orders}
        customers_by_id = {c.id: c for c in customers}
        invoices = [
            Invoice.from_dict(
                inv,
                index=i,
                orders_by_id=orders_by_id,
                customers_by_id=customers_by_id,
                company=profile,
                tax_rate=tax_rate,
                invoice_prefix=invoice_prefix,
            )
            for i, inv in enumerate(invoices_raw)
        ] if isinstance(invoices_raw, list) else []

        return cls(company_profile=profile, customers=customers, orders=orders, invoices=invoices)
