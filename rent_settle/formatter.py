"""Output helpers for the rent ledger.

This module provides simple functions to render splits, settlements, arrears,
receipts and certificates in a tabular text format. We rely only on built-in
printing and string formatting, as the CLI does for everything it shows.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from .data_models import (
    AnnualCertificate,
    ArrearsSummary,
    Contract,
    MonthlySplit,
    Receipt,
    Settlement,
    SettlementOutcome,
)
from .utils import month_label


def _contract_title(contract: Contract) -> str:
    address = contract.premises.address if contract.premises else f"property {contract.property_id}"
    tenant = contract.primary_tenant
    return f"#{contract.id} {address}" + (f" ({tenant.full_name})" if tenant else "")


def print_split(split: MonthlySplit) -> None:
    """Print the monthly fee split."""
    print("Monthly split")
    print("-" * 40)
    print(f"Gross rent         : {split.gross:.2f}")
    print(f"Management fee     : {split.fee:.2f}")
    print(f"VAT on fee         : {split.vat:.2f}")
    print(f"Net to owner       : {split.net:.2f}")
    print("-" * 40)


def print_settlements(settlements: Iterable[Settlement]) -> None:
    headers = ["Period", "Amount", "Settled at", "Notes"]
    print("\t".join(headers))
    for s in settlements:
        print("\t".join([s.period, f"{s.amount:.2f}", s.settled_at.strftime("%Y-%m-%d %H:%M"), s.notes or ""]))


def print_range_outcomes(outcomes: Sequence[SettlementOutcome]) -> None:
    """Print one row per month of a range settlement, failures included."""
    print("Period\tResult")
    for outcome in outcomes:
        result = f"settled {outcome.settlement.amount:.2f}" if outcome.ok else f"FAILED: {outcome.error}"
        print(f"{outcome.period}\t{result}")
    failed = [o for o in outcomes if not o.ok]
    print(f"{len(outcomes) - len(failed)} settled, {len(failed)} failed")


def print_arrears(summary: ArrearsSummary, contract: Optional[Contract] = None) -> None:
    """Print the arrears of one contract with its per-month detail."""
    title = f"Arrears as of {summary.as_of.isoformat()}"
    if contract is not None:
        title += f" - {_contract_title(contract)}"
    print(title)
    print("-" * 72)
    if not summary.months_pending:
        print("No pending months")
        print("-" * 72)
        return
    print(f"Total owed         : {summary.total_owed:.2f}")
    print(f"Months pending     : {summary.months_pending}")
    print(f"First pending month: {summary.first_pending_month}")
    print(f"Months late        : {summary.months_late}")
    print("-" * 72)
    print("Month\tOwed\tMonths late")
    for m in summary.detail:
        print(f"{m.label}\t{m.amount_owed:.2f}\t{m.months_late}")


def print_debts(overview: Sequence[Tuple[Contract, ArrearsSummary]], show_all: bool = False) -> None:
    print(f"{'Contract':50s} {'Owed':>12s} {'Months':>7s} {'Since':>16s}")
    total = 0
    for contract, summary in overview:
        if not summary.months_pending and not show_all:
            continue
        total += summary.total_owed
        print(
            f"{_contract_title(contract)[:50]:50s} {summary.total_owed:12.2f} "
            f"{summary.months_pending:7d} {summary.first_pending_month or '-':>16s}"
        )
    print(f"{'Total':50s} {total:12.2f}")


def print_status(rows: Sequence[Tuple[Contract, Optional[Settlement]]], month: int, year: int) -> None:
    print(f"Settlement status for {month_label(month, year)}")
    for contract, settlement in rows:
        state = f"Settled ({settlement.amount:.2f})" if settlement else "Pending"
        print(f"{_contract_title(contract)}\t{state}")


def print_receipt(receipt: Receipt) -> None:
    print(f"Receipt {receipt.number} - contract #{receipt.contract_id} - issued {receipt.issued_on.isoformat()}")
    print("Month\tGross\tFee\tVAT\tNet\tLate")
    for line in receipt.lines:
        print(
            f"{month_label(line.month, line.year)}\t{line.gross:.2f}\t{line.fee:.2f}\t"
            f"{line.vat:.2f}\t{line.net:.2f}\t{'Yes' if line.is_late else 'No'}"
        )
    for expense in receipt.expenses:
        kind = "deductible" if expense.deductible else "non-deductible"
        print(f"Expense: {expense.concept} {expense.amount:.2f} ({kind})")
    print(f"Totals: gross {receipt.total_gross:.2f}, fee {receipt.total_fee:.2f}, "
          f"VAT {receipt.total_vat:.2f}, net {receipt.total_net:.2f}")
    print(f"Final amount to owner: {receipt.final_net:.2f}")


def print_receipts(receipts: Iterable[Receipt]) -> None:
    print("Id\tNumber\tContract\tIssued\tMonths\tGross\tNet")
    for r in receipts:
        print(f"{r.id}\t{r.number}\t{r.contract_id}\t{r.issued_on.isoformat()}\t{len(r.lines)}\t"
              f"{r.total_gross:.2f}\t{r.final_net:.2f}")


def print_certificate(certificate: AnnualCertificate) -> None:
    """Print the global monthly table and the totals of an annual certificate."""
    owner = certificate.owner
    print(f"Annual certificate {certificate.year} - {owner.full_name} ({owner.tax_id})")
    print("=" * 72)
    print(f"{'Month':20s} {'Gross':>12s} {'Fee':>12s} {'VAT':>12s} {'Net':>12s}")
    for row in certificate.months:
        print(f"{row.label:20s} {row.gross:12.2f} {row.fee:12.2f} {row.vat:12.2f} {row.net:12.2f}")
    print("-" * 72)
    for prop in certificate.properties:
        print(f"{prop.premises.address[:20]:20s} {prop.gross:12.2f} {prop.fee:12.2f} {prop.vat:12.2f} {prop.net:12.2f}")
    print("=" * 72)
    print(f"{'Total':20s} {certificate.gross:12.2f} {certificate.fee:12.2f} {certificate.vat:12.2f} {certificate.net:12.2f}")
    print(f"Properties: {certificate.property_count}  Contracts: {certificate.contract_count}")
