from datetime import date
from decimal import Decimal

import pytest

from rent_settle.data_models import Contract, Property
from rent_settle.errors import OwnerNotFound, PropertyNotFound, TenantNotFound


def test_contract_is_loaded_with_joins(store, contract, owner, tenant):
    loaded = store.get_contract(contract.id)
    assert loaded.premises.address == "Carrer Major 1, 2n"
    assert loaded.owner.id == owner.id
    assert loaded.primary_tenant.id == tenant.id
    assert loaded.monthly_rent == Decimal("1000.00")


def test_add_property_requires_owner(store):
    with pytest.raises(OwnerNotFound):
        store.add_property(Property(id=None, owner_id=42, address="Nowhere"))


def test_add_contract_checks_references(store, premises):
    with pytest.raises(PropertyNotFound):
        store.add_contract(Contract(id=None, property_id=42, monthly_rent=Decimal("1"), start_date=date(2024, 1, 1)))
    with pytest.raises(TenantNotFound):
        store.add_contract(
            Contract(id=None, property_id=premises.id, monthly_rent=Decimal("1"), start_date=date(2024, 1, 1)),
            tenant_ids=[42],
        )
    assert store.list_contracts() == []


def test_update_and_deactivate(store, contract):
    updated = store.update_contract(contract.id, monthly_rent=Decimal("1050"), end_date=date(2026, 12, 31))
    assert updated.monthly_rent == Decimal("1050.00")
    assert updated.end_date == date(2026, 12, 31)
    deactivated = store.deactivate_contract(contract.id, date(2025, 6, 30))
    assert not deactivated.active
    assert store.list_contracts(active_only=True) == []
    assert store.update_contract(999, monthly_rent=Decimal("1")) is None


def test_holdings_for_owner(store, owner, premises, contract):
    holdings = store.holdings_for_owner(owner.id)
    assert [(p.id, [c.id for c in cs]) for p, cs in holdings] == [(premises.id, [contract.id])]


def test_owner_fee_lookup(store, owner):
    assert store.owner_fee_percent(owner.id) == Decimal("10")
    assert store.set_owner_fee(owner.id, Decimal("7.5"))
    assert store.owner_fee_percent(owner.id) == Decimal("7.5")
    assert store.owner_fee_percent(999) is None
    assert not store.set_owner_fee(999, Decimal("1"))


@pytest.mark.parametrize("native_upsert", [True, False])
def test_first_write_race_is_last_write_wins(tmp_path, monkeypatch, native_upsert):
    from datetime import datetime

    from sqlalchemy import event

    from rent_settle import store as store_module
    from rent_settle.data_models import Owner
    from rent_settle.ledger import LedgerService
    from rent_settle.store import RentalStore

    if not native_upsert:
        monkeypatch.setattr(store_module, "UPSERT_INSERTS", {})
    url = f"sqlite:///{tmp_path / 'race.sqlite3'}"
    store = RentalStore(url)
    other_writer = RentalStore(url)
    owner = store.add_owner(Owner(id=None, full_name="Marta", tax_id="X", management_fee_percent=Decimal("10")))
    premises = store.add_property(Property(id=None, owner_id=owner.id, address="Carrer Major 1"))
    contract = store.add_contract(
        Contract(id=None, property_id=premises.id, monthly_rent=Decimal("1000"), start_date=date(2024, 1, 1))
    )
    fired = []

    def write_first(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT INTO SETTLEMENTS") and not fired:
            fired.append(statement)
            other_writer.upsert_settlement(contract.id, 3, 2024, Decimal("500"), "other desk", datetime(2024, 4, 1))

    event.listen(store._engine, "before_cursor_execute", write_first)
    ledger = LedgerService(store, clock=lambda: datetime(2024, 4, 1, 12, 0))
    settlement = ledger.settle_month(contract.id, 3, 2024, 1200)

    assert fired
    assert settlement.amount == Decimal("1200.00")
    rows = store.list_settlements(contract.id)
    assert len(rows) == 1
    assert rows[0].amount == Decimal("1200.00")
    assert rows[0].notes is None


def test_update_can_clear_end_date(store, contract):
    store.update_contract(contract.id, end_date=date(2025, 12, 31))
    reopened = store.update_contract(contract.id, clear_end_date=True)
    assert reopened.end_date is None
    assert store.get_contract(contract.id).end_date is None
