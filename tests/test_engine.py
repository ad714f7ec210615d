from datetime import date
from decimal import Decimal

import pytest

from rent_settle.data_models import Contract, Expense, Owner, Property, Settlement
from rent_settle.engine import (
    arrears_window,
    build_receipt,
    compute_annual_certificate,
    compute_arrears,
    compute_monthly_split,
)
from rent_settle.errors import InvalidInput


def make_contract(**kwargs):
    values = dict(id=1, property_id=1, monthly_rent=Decimal("1000"), start_date=date(2024, 1, 1))
    values.update(kwargs)
    return Contract(**values)


def test_split_example():
    split = compute_monthly_split(1000, 10, 21)
    assert split.fee == Decimal("100.00")
    assert split.vat == Decimal("21.00")
    assert split.net == Decimal("879.00")
    assert split.gross == Decimal("1000.00")


@pytest.mark.parametrize(
    "gross, fee, vat",
    [("1234.56", "7.5", "21"), ("0.01", "33.33", "21"), ("999.99", "12.345", "10"), ("850", "0", "21"), ("850", "100", "21")],
)
def test_split_parts_add_up_within_a_cent(gross, fee, vat):
    split = compute_monthly_split(Decimal(gross), Decimal(fee), Decimal(vat))
    assert abs(split.fee + split.vat + split.net - split.gross) <= Decimal("0.01")


def test_split_zero_rent():
    split = compute_monthly_split(0, 10)
    assert split.fee == split.vat == split.net == Decimal("0.00")


@pytest.mark.parametrize("gross, fee, vat", [(-1, 10, 21), (1000, -1, 21), (1000, 101, 21), (1000, 10, -5), ("abc", 10, 21)])
def test_split_rejects_invalid_input(gross, fee, vat):
    with pytest.raises(InvalidInput):
        compute_monthly_split(gross, fee, vat)


def test_arrears_without_settlements():
    summary = compute_arrears(make_contract(), [], as_of=date(2024, 4, 1))
    assert summary.months_pending == 4
    assert summary.total_owed == Decimal("4000.00")
    assert summary.first_pending_month == "January 2024"
    assert summary.months_late == 3
    assert [m.months_late for m in summary.detail] == [3, 2, 1, 0]


def test_arrears_skip_settled_months():
    summary = compute_arrears(make_contract(), [(1, 2024), (2, 2024)], as_of=date(2024, 4, 1))
    assert summary.months_pending == 2
    assert summary.total_owed == Decimal("2000.00")
    assert summary.first_pending_month == "March 2024"


def test_arrears_uses_current_rent():
    summary = compute_arrears(make_contract(monthly_rent=Decimal("1100")), [], as_of=date(2024, 2, 15))
    assert summary.total_owed == Decimal("2200.00")


def test_arrears_stop_at_deactivation():
    contract = make_contract(active=False, deactivated_on=date(2024, 2, 20))
    summary = compute_arrears(contract, [], as_of=date(2024, 12, 1))
    assert [(m.month, m.year) for m in summary.detail] == [(1, 2024), (2, 2024)]


def test_inactive_contract_without_date_accrues_nothing():
    contract = make_contract(active=False)
    assert arrears_window(contract, date(2024, 6, 1)) is None
    summary = compute_arrears(contract, [], as_of=date(2024, 6, 1))
    assert summary.months_pending == 0
    assert summary.total_owed == Decimal("0.00")
    assert summary.first_pending_month is None


def test_arrears_stop_at_end_date():
    contract = make_contract(end_date=date(2024, 3, 31))
    summary = compute_arrears(contract, [], as_of=date(2025, 1, 1))
    assert summary.months_pending == 3


def test_arrears_respect_earliest_period():
    summary = compute_arrears(make_contract(start_date=date(2020, 1, 1)), [], date(2024, 4, 1), earliest=date(2024, 3, 1))
    assert summary.months_pending == 2
    assert summary.first_pending_month == "March 2024"


def test_future_contract_has_no_arrears():
    summary = compute_arrears(make_contract(start_date=date(2024, 6, 1)), [], as_of=date(2024, 4, 1))
    assert summary.detail == []


def test_annual_certificate_sums_rounded_lines():
    owner = Owner(id=1, full_name="Marta", tax_id="X", management_fee_percent=Decimal("10"))
    premises = Property(id=1, owner_id=1, address="Carrer Major 1")
    contract = make_contract()
    settlements = {
        1: [
            Settlement(contract_id=1, month=m, year=2024, amount=Decimal("1000"), settled_at=None)
            for m in (1, 2, 3)
        ]
        + [Settlement(contract_id=1, month=12, year=2023, amount=Decimal("1000"), settled_at=None)]
    }
    cert = compute_annual_certificate(owner, [(premises, [contract])], settlements, 2024, Decimal("21"), date(2025, 1, 10))
    assert cert.gross == Decimal("3000.00")
    assert cert.fee == Decimal("300.00")
    assert cert.vat == Decimal("63.00")
    assert cert.net == Decimal("2637.00")
    assert len(cert.months) == 12
    assert cert.months[0].gross == Decimal("1000.00")
    assert cert.months[11].gross == Decimal("0.00")
    assert cert.property_count == 1
    assert cert.contract_count == 1


def test_build_receipt_flags_late_months_and_sorts():
    contract = make_contract()
    receipt = build_receipt(
        contract,
        Decimal("10"),
        [(4, 2024), (2, 2024), (4, 2024)],
        "REC-2024-0001",
        issued_on=date(2024, 4, 5),
        expenses=[Expense("Plumber", Decimal("50")), Expense("Community", Decimal("30"), deductible=False)],
    )
    assert [(l.month, l.year, l.is_late) for l in receipt.lines] == [(2, 2024, True), (4, 2024, False)]
    assert receipt.total_gross == Decimal("2000.00")
    assert receipt.total_net == Decimal("1758.00")
    assert receipt.final_net == Decimal("1708.00")
    assert receipt.total_expenses == Decimal("80.00")


def test_build_receipt_rejects_empty_and_negative():
    with pytest.raises(InvalidInput):
        build_receipt(make_contract(), Decimal("10"), [], "R1")
    with pytest.raises(InvalidInput):
        build_receipt(make_contract(), Decimal("10"), [(1, 2024)], "R1", expenses=[Expense("x", Decimal("-1"))])
