"""Shared fixtures: a temp-file store and a service with a settable clock."""

from datetime import datetime, timezone

import pytest

from core.models import CompanyProfile
from core.store import BillingStore
from tools.billing.service import BillingService

# Wednesday of ISO week 2026-W10 (Mon 2026-03-02 .. Sun 2026-03-08)
WEDNESDAY = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)

COMPANY = CompanyProfile(
    name="Auto-Anlage GmbH",
    address="Musterstrasse 1, 80331 Muenchen",
    email="rechnung@auto-anlage.de",
    phone="+49 89 000000",
)


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = WEDNESDAY):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "db.json"


@pytest.fixture
def store(db_path):
    return BillingStore(db_path, company=COMPANY)


@pytest.fixture
def service(store, clock):
    return BillingService(store, tax_rate=0.19, payment_window_days=14, clock=clock)
