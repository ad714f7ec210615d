"""Core calculation engine for rental settlements.

This module implements the business rules of the rent ledger: splitting a
gross monthly rent into management fee, VAT on that fee and the owner's net
amount; working out which months of a contract are still unsettled and how
much is owed; folding settled months into an owner's annual certificate; and
totalling the lines of a multi-month receipt. Every function here is pure:
the store is read by the caller and the results are returned as dataclasses
from ``data_models``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .data_models import (
    AnnualCertificate,
    ArrearsMonth,
    ArrearsSummary,
    CertificateMonth,
    Contract,
    Expense,
    MonthlySplit,
    Owner,
    Property,
    PropertyCertificate,
    Receipt,
    ReceiptLine,
    Settlement,
    ZERO,
)
from .errors import InvalidInput
from .utils import (
    iter_months,
    month_label,
    month_start,
    months_between,
    round_cents,
    to_decimal,
    validate_period,
)

DEFAULT_VAT_RATE = Decimal("21")

Period = Tuple[int, int]  # (month, year)


def compute_monthly_split(gross, fee_percent, vat_rate=DEFAULT_VAT_RATE) -> MonthlySplit:
    """Split a gross monthly rent into fee, VAT and net.

    The formula is:

        fee = gross * fee_percent / 100
        vat = fee * vat_rate / 100
        net = gross - fee - vat

    All three are computed from unrounded values and each result is then
    rounded to cents (half up) on its own. ``fee + vat + net`` therefore
    matches ``gross`` to within one cent, not exactly.

    Raises
    ------
    InvalidInput
        If ``gross`` is negative, ``fee_percent`` lies outside [0, 100] or
        ``vat_rate`` is negative.
    """
    gross = to_decimal(gross)
    fee_percent = to_decimal(fee_percent)
    vat_rate = to_decimal(vat_rate)
    if gross < 0:
        raise InvalidInput(f"Gross rent cannot be negative; got {gross}")
    if not Decimal(0) <= fee_percent <= Decimal(100):
        raise InvalidInput(f"Management fee must be between 0 and 100 percent; got {fee_percent}")
    if vat_rate < 0:
        raise InvalidInput(f"VAT rate cannot be negative; got {vat_rate}")

    fee = gross * fee_percent / Decimal(100)
    vat = fee * vat_rate / Decimal(100)
    net = gross - fee - vat
    return MonthlySplit(
        gross=round_cents(gross),
        fee=round_cents(fee),
        vat=round_cents(vat),
        net=round_cents(net),
    )


def arrears_window(
    contract: Contract, as_of: date, earliest: Optional[date] = None
) -> Optional[Tuple[date, date]]:
    """Return the first and last month that can accrue arrears.

    The window runs from the contract start (or ``earliest`` when that is
    later) to the month of ``as_of``, clipped to the end date and, for an
    inactive contract, to its deactivation month. ``None`` means no month
    qualifies.
    """
    if not contract.active and contract.deactivated_on is None:
        return None
    first = month_start(contract.start_date)
    if earliest is not None:
        first = max(first, month_start(earliest))
    last = month_start(as_of)
    if contract.end_date is not None:
        last = min(last, month_start(contract.end_date))
    if not contract.active:
        last = min(last, month_start(contract.deactivated_on))
    if first > last:
        return None
    return first, last


def compute_arrears(
    contract: Contract,
    settled: Iterable[Period],
    as_of: Optional[date] = None,
    earliest: Optional[date] = None,
) -> ArrearsSummary:
    """Compute the outstanding debt of ``contract`` as of ``as_of``.

    Parameters
    ----------
    contract: Contract
        The contract; its current ``monthly_rent`` is owed for every pending
        month, whatever the rent was at the time.
    settled: Iterable[Tuple[int, int]]
        ``(month, year)`` pairs that already have a settlement.
    as_of: date
        Evaluation date, today by default. Its month counts as pending when
        unsettled, with 0 months late.
    earliest: date
        Optional earliest tracked period; months before it are ignored.
    """
    as_of = as_of or date.today()
    summary = ArrearsSummary(contract_id=contract.id, as_of=as_of)
    window = arrears_window(contract, as_of, earliest)
    if window is None:
        return summary

    settled_set: Set[Period] = set(settled)
    rent = round_cents(to_decimal(contract.monthly_rent))
    for month, year in iter_months(*window):
        if (month, year) in settled_set:
            continue
        late = months_between(date(year, month, 1), as_of)
        summary.detail.append(
            ArrearsMonth(
                month=month,
                year=year,
                label=month_label(month, year),
                amount_owed=rent,
                months_late=late,
            )
        )

    if summary.detail:
        oldest = summary.detail[0]
        summary.total_owed = sum((m.amount_owed for m in summary.detail), ZERO)
        summary.months_pending = len(summary.detail)
        summary.first_pending_month = oldest.label
        summary.months_late = oldest.months_late
    return summary


def _empty_months(year: int) -> List[CertificateMonth]:
    return [CertificateMonth(month=m, year=year, label=month_label(m, year)) for m in range(1, 13)]


def _add_split(row, split: MonthlySplit) -> None:
    row.gross += split.gross
    row.fee += split.fee
    row.vat += split.vat
    row.net += split.net


def _fold_certificate(
    owner: Owner,
    year: int,
    per_property: Sequence[Tuple[Property, int, Iterable[Tuple[int, MonthlySplit]]]],
    issued_on: Optional[date],
) -> AnnualCertificate:
    """Group rounded monthly splits by month and by property and sum them."""
    global_months = _empty_months(year)
    properties: List[PropertyCertificate] = []
    for premises, contract_count, lines in per_property:
        months = _empty_months(year)
        for month, split in lines:
            _add_split(months[month - 1], split)
            _add_split(global_months[month - 1], split)
        cert = PropertyCertificate(premises=premises, contract_count=contract_count, months=months)
        for row in months:
            _add_split(cert, row)
        properties.append(cert)

    certificate = AnnualCertificate(
        owner=owner,
        year=year,
        issued_on=issued_on or date.today(),
        properties=properties,
        months=global_months,
    )
    for cert in properties:
        _add_split(certificate, cert)
    return certificate


def compute_annual_certificate(
    owner: Owner,
    holdings: Sequence[Tuple[Property, Sequence[Contract]]],
    settlements: Mapping[int, Iterable[Settlement]],
    year: int,
    vat_rate=DEFAULT_VAT_RATE,
    issued_on: Optional[date] = None,
) -> AnnualCertificate:
    """Build the annual certificate of ``owner`` from settled months.

    Each settlement of ``year`` contributes the split of its settled amount
    at the owner's current fee percentage. Totals are sums of the rounded
    per-month lines, never a rounding of a summed gross.
    """
    validate_period(1, year)
    per_property = []
    for premises, contracts in holdings:
        lines: List[Tuple[int, MonthlySplit]] = []
        for contract in contracts:
            for settlement in settlements.get(contract.id, ()):
                if settlement.year != year:
                    continue
                split = compute_monthly_split(settlement.amount, owner.management_fee_percent, vat_rate)
                lines.append((settlement.month, split))
        per_property.append((premises, len(contracts), lines))
    return _fold_certificate(owner, year, per_property, issued_on)


def compute_certificate_from_receipts(
    owner: Owner,
    holdings: Sequence[Tuple[Property, Sequence[Contract]]],
    receipts: Mapping[int, Iterable[Receipt]],
    year: int,
    issued_on: Optional[date] = None,
) -> AnnualCertificate:
    """Build the annual certificate from the month lines of issued receipts.

    Only lines whose own year is ``year`` are counted, whatever the issue
    date of the receipt.
    """
    validate_period(1, year)
    per_property = []
    for premises, contracts in holdings:
        lines: List[Tuple[int, MonthlySplit]] = []
        for contract in contracts:
            for receipt in receipts.get(contract.id, ()):
                for line in receipt.lines:
                    if line.year == year:
                        lines.append(
                            (line.month, MonthlySplit(gross=line.gross, fee=line.fee, vat=line.vat, net=line.net))
                        )
        per_property.append((premises, len(contracts), lines))
    return _fold_certificate(owner, year, per_property, issued_on)


def build_receipt(
    contract: Contract,
    fee_percent,
    periods: Sequence[Period],
    number: str,
    issued_on: Optional[date] = None,
    expenses: Optional[Iterable[Expense]] = None,
    vat_rate=DEFAULT_VAT_RATE,
    payment_method: Optional[str] = None,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Receipt:
    """Compute the lines and totals of a receipt for ``periods``.

    Every month is billed at the contract's current rent. A month earlier
    than the issue month is flagged as late.
    """
    if not periods:
        raise InvalidInput("A receipt needs at least one month")
    issued_on = issued_on or date.today()
    issue_month = month_start(issued_on)
    expense_list = list(expenses or [])
    for expense in expense_list:
        if to_decimal(expense.amount) < 0:
            raise InvalidInput(f"Expense amount cannot be negative; got {expense.amount}")

    seen: Dict[Period, None] = {}
    for month, year in periods:
        validate_period(month, year)
        seen.setdefault((month, year), None)
    ordered = sorted(seen, key=lambda p: (p[1], p[0]))

    split = compute_monthly_split(contract.monthly_rent, fee_percent, vat_rate)
    lines = [
        ReceiptLine(
            month=month,
            year=year,
            gross=split.gross,
            fee=split.fee,
            vat=split.vat,
            net=split.net,
            is_late=date(year, month, 1) < issue_month,
        )
        for month, year in ordered
    ]
    return Receipt(
        number=number,
        contract_id=contract.id,
        issued_on=issued_on,
        total_gross=sum((l.gross for l in lines), ZERO),
        total_fee=sum((l.fee for l in lines), ZERO),
        total_vat=sum((l.vat for l in lines), ZERO),
        total_net=sum((l.net for l in lines), ZERO),
        lines=lines,
        expenses=[
            Expense(
                concept=e.concept,
                amount=round_cents(to_decimal(e.amount)),
                deductible=e.deductible,
                description=e.description,
            )
            for e in expense_list
        ],
        payment_method=payment_method,
        payment_reference=payment_reference,
        notes=notes,
    )
