"""
RECON REST API — /api/

Thin HTTP layer over BillingService for the shop's web front end.
Accesses the service through ``request.app.state.billing`` to avoid
circular imports. Billing errors map to HTTP status codes in
register_error_handlers(): validation and invalid status transitions
→ 400, missing entities → 404.

Invoices in responses carry the derived ``stage`` (created / sent /
overdue / paid) next to the stored ``status``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from core.errors import BillingError, InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger("recon.api")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_CODES = {
    ValidationError: 400,
    InvalidTransitionError: 400,
    NotFoundError: 404,
}


async def _billing_error_handler(request: Request, exc: BillingError):
    status_code = _STATUS_CODES.get(type(exc), 400)
    logger.warning("%s %s → %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_error_handlers(app: FastAPI):
    """Install the BillingError → HTTP response mapping on an app."""
    app.add_exception_handler(BillingError, _billing_error_handler)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class CustomerCreate(BaseModel):
    name: str = ""
    short_name: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""


class OrderLine(BaseModel):
    license_plate: str = ""
    vehicle_model: str = ""
    vin: str = ""
    program_number: Optional[int] = None
    base_service_id: str = ""
    addon_service_ids: list[str] = []
    notes: str = ""


class OrdersCreate(OrderLine):
    """Either a list of lines in ``orders`` or a single line at top level."""
    customer_id: str = ""
    completed_at: Optional[str] = None
    orders: Optional[list[OrderLine]] = None


class OrderUpdate(BaseModel):
    customer_id: Optional[str] = None
    license_plate: Optional[str] = None
    vehicle_model: Optional[str] = None
    vin: Optional[str] = None
    program_number: Optional[int] = None
    base_service_id: Optional[str] = None
    addon_service_ids: Optional[list[str]] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    completed_at: Optional[str] = None


class WeeklyBillingRequest(BaseModel):
    customer_ids: list[str] = []
    week_start: Optional[str] = None
    week_end: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

# -- Catalog -----------------------------------------------------------------

@router.get("/catalog")
async def get_catalog(request: Request):
    """Return base and add-on services with prices."""
    return request.app.state.billing.catalog()


# -- Customers ---------------------------------------------------------------

@router.get("/customers")
async def list_customers(request: Request):
    billing = request.app.state.billing
    return {"customers": [c.to_dict() for c in await billing.list_customers()]}


@router.post("/customers", status_code=201)
async def create_customer(body: CustomerCreate, request: Request):
    billing = request.app.state.billing
    customer = await billing.create_customer(**body.model_dump())
    return {"customer": customer.to_dict()}


# -- Orders ------------------------------------------------------------------

@router.get("/orders")
async def list_orders(request: Request):
    """Return orders newest first, with customer names."""
    billing = request.app.state.billing
    return {"orders": await billing.list_orders()}


@router.post("/orders", status_code=201)
async def create_orders(body: OrdersCreate, request: Request):
    """Create one or more completed orders for a customer."""
    billing = request.app.state.billing
    if body.orders is not None:
        lines = [line.model_dump() for line in body.orders]
    else:
        lines = [body.model_dump(include=set(OrderLine.model_fields))]

    orders = await billing.create_orders(body.customer_id, lines, completed_at=body.completed_at)
    return {"orders_created": len(orders), "orders": [o.to_dict() for o in orders]}


@router.get("/orders/{order_id}")
async def get_order(order_id: str, request: Request):
    billing = request.app.state.billing
    return {"order": (await billing.get_order(order_id)).to_dict()}


@router.put("/orders/{order_id}")
async def update_order(order_id: str, body: OrderUpdate, request: Request):
    billing = request.app.state.billing
    order = await billing.update_order(order_id, body.model_dump(exclude_unset=True))
    return {"order": order.to_dict()}


@router.post("/orders/{order_id}/invoice", status_code=201)
async def bill_order(order_id: str, request: Request):
    """Invoice a single order (returns the existing invoice if already billed)."""
    billing = request.app.state.billing
    invoice = await billing.bill_single_order(order_id)
    return {"invoice": billing.invoice_view(invoice)}


# -- Invoices ----------------------------------------------------------------

@router.get("/invoices")
async def list_invoices(request: Request):
    billing = request.app.state.billing
    now = billing.now()
    return {"invoices": [billing.invoice_view(i, now) for i in await billing.list_invoices()]}


@router.get("/invoices/summary")
async def invoice_summary(request: Request):
    """Counts per stage and open / overdue / paid totals."""
    billing = request.app.state.billing
    return {"summary": await billing.invoice_summary()}


@router.post("/invoices/weekly")
async def bill_weekly(body: WeeklyBillingRequest, request: Request):
    """Weekly billing run. Empty customer_ids = all customers, no range = current week."""
    billing = request.app.state.billing
    result = await billing.bill_weekly(body.customer_ids, body.week_start, body.week_end)
    now = billing.now()
    response = result.to_dict()
    response["invoices"] = [billing.invoice_view(i, now) for i in result.invoices]
    response["message"] = f"{len(result.invoices)} invoice(s) created"
    return response


@router.get("/invoices/{invoice_id}")
async def get_invoice(invoice_id: str, request: Request):
    billing = request.app.state.billing
    return {"invoice": billing.invoice_view(await billing.get_invoice(invoice_id))}


@router.patch("/invoices/{invoice_id}/sent")
async def mark_sent(invoice_id: str, request: Request):
    billing = request.app.state.billing
    invoices = await billing.mark_invoice_sent(invoice_id)
    now = billing.now()
    return {"invoices": [billing.invoice_view(i, now) for i in invoices]}


@router.patch("/invoices/{invoice_id}/paid")
async def mark_paid(invoice_id: str, request: Request):
    billing = request.app.state.billing
    invoices = await billing.mark_invoice_paid(invoice_id)
    now = billing.now()
    return {"invoices": [billing.invoice_view(i, now) for i in invoices]}


@router.get("/invoices/{invoice_id}/pdf")
async def invoice_pdf(invoice_id: str, request: Request):
    billing = request.app.state.billing
    invoice = await billing.get_invoice(invoice_id)
    data = await billing.render_invoice_pdf(invoice_id)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=Invoice-{invoice.invoice_number}.pdf"},
    )


# -- Company profile ---------------------------------------------------------

@router.get("/company")
async def get_company(request: Request):
    billing = request.app.state.billing
    return {"company": (await billing.company_profile()).to_dict()}


@router.put("/company")
async def update_company(body: CompanyUpdate, request: Request):
    billing = request.app.state.billing
    profile = await billing.update_company_profile(**body.model_dump(exclude_none=True))
    return {"company": profile.to_dict()}
