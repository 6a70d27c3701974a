"""
RECON Billing Errors

Every failure in the billing core is scoped to the single requested
operation and raised synchronously to the caller. The REST layer maps
these onto HTTP status codes; the CLI prints them.

    ValidationError         bad or missing input (user-correctable)
    NotFoundError           referenced customer/order/invoice is absent
    InvalidTransitionError  invoice status machine violation
"""


class BillingError(Exception):
    """Base class for all billing-core errors."""


class ValidationError(BillingError):
    """Raised when input is missing or malformed."""


class NotFoundError(BillingError):
    """Raised when a referenced entity does not exist.

    Attributes:
        kind:      Entity kind ("customer", "order", "invoice")
        entity_id: The id that was looked up
    """

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} '{entity_id}' not found")


class InvalidTransitionError(BillingError):
    """Raised when an invoice status change is not allowed from its current state."""

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice '{invoice_id}' cannot go from '{from_status}' to '{to_status}'"
        )
