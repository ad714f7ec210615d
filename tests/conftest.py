from datetime import date, datetime
from decimal import Decimal

import pytest

from rent_settle.data_models import Contract, Owner, Property, Tenant
from rent_settle.ledger import LedgerService
from rent_settle.receipts import ReceiptService
from rent_settle.store import RentalStore

NOW = datetime(2024, 4, 1, 10, 30)


@pytest.fixture
def store():
    return RentalStore("sqlite://")


@pytest.fixture
def ledger(store):
    return LedgerService(store, vat_rate=Decimal("21"), clock=lambda: NOW)


@pytest.fixture
def receipts(ledger):
    return ReceiptService(ledger, clock=lambda: NOW)


@pytest.fixture
def owner(store):
    return store.add_owner(
        Owner(id=None, full_name="Marta Soler", tax_id="12345678Z", management_fee_percent=Decimal("10"))
    )


@pytest.fixture
def premises(store, owner):
    return store.add_property(Property(id=None, owner_id=owner.id, address="Carrer Major 1, 2n", city="Girona"))


@pytest.fixture
def tenant(store):
    return store.add_tenant(Tenant(id=None, full_name="Joan Puig", national_id="87654321X"))


@pytest.fixture
def contract(store, premises, tenant):
    """Rent 1000 from January 2024, owner fee 10 %."""
    return store.add_contract(
        Contract(id=None, property_id=premises.id, monthly_rent=Decimal("1000"), start_date=date(2024, 1, 1)),
        tenant_ids=[tenant.id],
    )
