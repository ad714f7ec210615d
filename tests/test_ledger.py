from datetime import date
from decimal import Decimal

import pytest

from rent_settle.errors import ContractNotFound, InvalidInput, InvalidRange, StoreFailure


def test_settle_then_unsettle(ledger, contract):
    ledger.settle_month(contract.id, 3, 2024, 1000)
    assert ledger.is_settled(contract.id, 3, 2024)
    assert ledger.unsettle_month(contract.id, 3, 2024) is True
    assert not ledger.is_settled(contract.id, 3, 2024)


def test_unsettle_pending_month_is_a_no_op(ledger, contract):
    assert ledger.unsettle_month(contract.id, 3, 2024) is False


def test_settle_twice_keeps_one_record(ledger, store, contract):
    ledger.settle_month(contract.id, 3, 2024, 1000, "partial")
    ledger.settle_month(contract.id, 3, 2024, 1200)
    rows = store.list_settlements(contract.id)
    assert len(rows) == 1
    assert rows[0].amount == Decimal("1200.00")
    assert rows[0].notes is None


def test_settle_range_covers_each_month(ledger, contract):
    outcomes = ledger.settle_range(contract.id, 3, 2024, 5, 2024, 100)
    assert [(o.month, o.year) for o in outcomes] == [(3, 2024), (4, 2024), (5, 2024)]
    assert all(o.ok for o in outcomes)
    assert all(o.settlement.amount == Decimal("100.00") for o in outcomes)
    assert [s.amount for s in ledger.list_settlements(contract.id)] == [Decimal("100.00")] * 3
    for month in (3, 4, 5):
        assert ledger.is_settled(contract.id, month, 2024)


def test_settle_range_across_years(ledger, contract):
    outcomes = ledger.settle_range(contract.id, 11, 2024, 2, 2025, 100)
    assert [o.period for o in outcomes] == ["2024-11", "2024-12", "2025-01", "2025-02"]


def test_settle_range_rejects_reversed_range(ledger, contract):
    with pytest.raises(InvalidRange):
        ledger.settle_range(contract.id, 5, 2024, 3, 2024, 100)


def test_settle_range_continues_after_a_failure(ledger, store, contract, monkeypatch):
    real_upsert = store.upsert_settlement

    def flaky(contract_id, month, year, *args):
        if month == 4:
            raise StoreFailure("disk full")
        return real_upsert(contract_id, month, year, *args)

    monkeypatch.setattr(store, "upsert_settlement", flaky)
    outcomes = ledger.settle_range(contract.id, 3, 2024, 5, 2024, 100)
    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].error == "disk full"
    assert ledger.is_settled(contract.id, 5, 2024)
    assert not ledger.is_settled(contract.id, 4, 2024)


def test_unknown_contract(ledger):
    with pytest.raises(ContractNotFound):
        ledger.settle_month(999, 1, 2024, 100)
    with pytest.raises(ContractNotFound):
        ledger.arrears(999)


@pytest.mark.parametrize("month, year, amount", [(13, 2024, 100), (0, 2024, 100), (1, 1899, 100), (1, 2201, 100), (1, 2024, -5)])
def test_settle_rejects_invalid_input(ledger, store, contract, month, year, amount):
    with pytest.raises(InvalidInput):
        ledger.settle_month(contract.id, month, year, amount)
    assert store.list_settlements(contract.id) == []


def test_arrears_follow_settlements(ledger, contract):
    summary = ledger.arrears(contract.id, date(2024, 4, 1))
    assert summary.months_pending == 4
    assert summary.total_owed == Decimal("4000.00")
    assert summary.first_pending_month == "January 2024"
    assert summary.months_late == 3

    ledger.settle_month(contract.id, 1, 2024, 1000)
    ledger.settle_month(contract.id, 2, 2024, 1000)
    summary = ledger.arrears(contract.id, date(2024, 4, 1))
    assert summary.months_pending == 2
    assert summary.total_owed == Decimal("2000.00")


def test_arrears_default_to_clock(ledger, contract):
    assert ledger.arrears(contract.id).as_of == date(2024, 4, 1)


def test_deactivated_contract_stops_accruing(ledger, store, contract):
    store.deactivate_contract(contract.id, date(2024, 2, 10))
    summary = ledger.arrears(contract.id, date(2024, 12, 1))
    assert summary.months_pending == 2


def test_fee_change_is_retroactive(ledger, store, owner, contract):
    assert ledger.monthly_split(contract.id).fee == Decimal("100.00")
    store.set_owner_fee(owner.id, Decimal("8"))
    assert ledger.monthly_split(contract.id).fee == Decimal("80.00")


def test_debts_overview_sorted_by_debt(ledger, store, premises, contract):
    from rent_settle.data_models import Contract

    small = store.add_contract(
        Contract(id=None, property_id=premises.id, monthly_rent=Decimal("500"), start_date=date(2024, 3, 1))
    )
    overview = ledger.debts_overview(date(2024, 4, 1))
    assert [c.id for c, _ in overview] == [contract.id, small.id]
    assert overview[1][1].total_owed == Decimal("1000.00")


def test_settlement_status(ledger, contract):
    ledger.settle_month(contract.id, 3, 2024, 1000)
    rows = ledger.settlement_status(3, 2024)
    assert rows[0][0].id == contract.id
    assert rows[0][1].amount == Decimal("1000.00")
    assert ledger.settlement_status(4, 2024)[0][1] is None


def test_list_settlements_newest_first(ledger, contract):
    ledger.settle_range(contract.id, 11, 2023, 2, 2024, 1000)
    assert [s.period for s in ledger.list_settlements(contract.id)] == ["2024-02", "2024-01", "2023-12", "2023-11"]


def test_annual_certificate_from_settlements(ledger, owner, contract):
    ledger.settle_range(contract.id, 1, 2024, 3, 2024, 1000)
    cert = ledger.annual_certificate(owner.id, 2024)
    assert cert.gross == Decimal("3000.00")
    assert cert.net == Decimal("2637.00")
    assert cert.properties[0].premises.address == "Carrer Major 1, 2n"


def test_annual_certificate_rejects_unknown_basis(ledger, owner):
    with pytest.raises(InvalidInput):
        ledger.annual_certificate(owner.id, 2024, basis="invoices")


def test_fee_lookup_names_the_missing_property(ledger):
    from rent_settle.data_models import Contract
    from rent_settle.errors import PropertyNotFound

    orphan = Contract(id=7, property_id=42, monthly_rent=Decimal("900"), start_date=date(2024, 1, 1))
    with pytest.raises(PropertyNotFound, match="Property 42 not found"):
        ledger.fee_percent(orphan)
