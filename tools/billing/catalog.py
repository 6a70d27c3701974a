"""
Service catalog and pricing resolver for the reconditioning shop.

The catalog is static: base services (one per order, defines the unit
net price) and add-on services (stacked onto a base service). Lookups
are lenient: an unknown id resolves to price 0 and its own id as label,
so invoice generation never fails on a stale catalog reference. Service
ids are validated when orders are created, not here.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ServiceItem:
    """A billable service offering with a fixed net price."""
    id: str
    name: str
    price: float

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "price": self.price}


BASE_SERVICES: tuple[ServiceItem, ...] = (
    ServiceItem("basic", "Interior & exterior cleaning", 79.00),
    ServiceItem("premium", "Premium reconditioning", 149.00),
    ServiceItem("showroom", "Showroom complete package", 249.00),
)

ADDON_SERVICES: tuple[ServiceItem, ...] = (
    ServiceItem("polish", "Paint polish", 59.00),
    ServiceItem("ozone", "Ozone treatment", 39.00),
    ServiceItem("engine", "Engine bay cleaning", 49.00),
    ServiceItem("seal", "Paint sealant", 89.00),
)

_BY_ID: dict[str, ServiceItem] = {s.id: s for s in BASE_SERVICES + ADDON_SERVICES}

# Program numbers group line items on the printed legend
PROGRAM_NUMBERS = range(1, 7)
_PROGRAM_BY_BASE = {"basic": 1, "premium": 2, "showroom": 3}


def base_services() -> list[ServiceItem]:
    return list(BASE_SERVICES)


def addon_services() -> list[ServiceItem]:
    return list(ADDON_SERVICES)


def all_services() -> list[ServiceItem]:
    return list(BASE_SERVICES + ADDON_SERVICES)


def is_base_service(service_id: str) -> bool:
    return any(s.id == service_id for s in BASE_SERVICES)


def is_addon_service(service_id: str) -> bool:
    return any(s.id == service_id for s in ADDON_SERVICES)


def label_of(service_id: str) -> str:
    """Display name for a service, or the id itself if it is not in the catalog."""
    item = _BY_ID.get(service_id)
    return item.name if item else service_id


def price_of(service_id: str) -> float:
    """Net price for a service, or 0.0 if it is not in the catalog."""
    item = _BY_ID.get(service_id)
    return item.price if item else 0.0


def infer_program_number(base_service_id: str) -> int:
    """Default program number for a base service (1 when unknown)."""
    return _PROGRAM_BY_BASE.get(base_service_id, 1)


def is_valid_program_number(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in PROGRAM_NUMBERS
