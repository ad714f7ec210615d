"""Receipt issuing, numbering and history.

A receipt covers one or more months of a single contract. Its lines are
computed by ``engine.build_receipt`` at the owner's current management fee
and stored together with any additional expenses. Receipts are never edited
after they are issued; they can only be deleted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .data_models import Expense, Receipt
from .engine import build_receipt
from .errors import InvalidInput, ReceiptNotFound
from .ledger import LedgerService
from .utils import add_months, to_decimal, validate_period

logger = logging.getLogger(__name__)

PAYMENT_METHODS = [
    "Bank transfer",
    "Direct debit",
    "Cash",
    "Cheque",
    "Credit card",
    "Bizum",
    "Other",
]

NUMBER_PREFIX = "REC"


def consecutive_periods(month: int, year: int, count: int) -> List[Tuple[int, int]]:
    """``count`` consecutive ``(month, year)`` periods starting at ``month``/``year``."""
    validate_period(month, year)
    if count < 1:
        raise InvalidInput(f"Number of months must be at least 1; got {count}")
    start = date(year, month, 1)
    return [(d.month, d.year) for d in (add_months(start, i) for i in range(count))]


class ReceiptService:
    def __init__(
        self,
        ledger: LedgerService,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.ledger = ledger
        self.store = ledger.store
        self._clock = clock

    def next_number(self, year: int) -> str:
        """Next free ``REC-<year>-<NNNN>`` number."""
        prefix = f"{NUMBER_PREFIX}-{year}-"
        sequence = 0
        for number in self.store.receipt_numbers_with_prefix(prefix):
            suffix = number[len(prefix):]
            if suffix.isdigit():
                sequence = max(sequence, int(suffix))
        return f"{prefix}{sequence + 1:04d}"

    def issue(
        self,
        contract_id: int,
        periods: Sequence[Tuple[int, int]],
        *,
        expenses: Optional[Iterable[Expense]] = None,
        number: Optional[str] = None,
        issued_on: Optional[date] = None,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Receipt:
        """Compute and store a receipt for ``periods`` of a contract."""
        contract = self.ledger.contract(contract_id)
        fee_percent = self.ledger.fee_percent(contract)
        issued_on = issued_on or self._clock().date()
        number = (number or "").strip() or self.next_number(issued_on.year)
        receipt = build_receipt(
            contract,
            fee_percent,
            periods,
            number,
            issued_on=issued_on,
            expenses=expenses,
            vat_rate=self.ledger.vat_rate,
            payment_method=payment_method,
            payment_reference=payment_reference,
            notes=notes,
        )
        stored = self.store.add_receipt(receipt)
        logger.info(
            "Issued receipt %s for contract %s: %d month(s), gross %s",
            stored.number,
            contract_id,
            len(stored.lines),
            stored.total_gross,
        )
        return stored

    def get(self, receipt_id: int) -> Receipt:
        receipt = self.store.get_receipt(receipt_id)
        if receipt is None:
            raise ReceiptNotFound(receipt_id)
        return receipt

    def history(self, contract_id: Optional[int] = None, year: Optional[int] = None) -> List[Receipt]:
        if year is not None:
            validate_period(1, year)
        return self.store.list_receipts(contract_id=contract_id, year=year)

    def delete(self, receipt_id: int) -> None:
        if not self.store.delete_receipt(receipt_id):
            raise ReceiptNotFound(receipt_id)
        logger.info("Deleted receipt %s", receipt_id)


def parse_expense(text: str) -> Expense:
    """Parse ``CONCEPT:AMOUNT[:deductible|non-deductible[:DESCRIPTION]]``."""
    parts = text.split(":", 3)
    if len(parts) < 2:
        raise InvalidInput(f"Expense must be in CONCEPT:AMOUNT[:deductible|non-deductible] format; got {text}")
    concept, amount = parts[0].strip(), to_decimal(parts[1])
    if not concept:
        raise InvalidInput(f"Expense concept cannot be empty; got {text}")
    deductible = True
    if len(parts) > 2 and parts[2].strip():
        flag = parts[2].strip().lower()
        if flag not in ("deductible", "non-deductible"):
            raise InvalidInput(f"Expense flag must be 'deductible' or 'non-deductible'; got {flag}")
        deductible = flag == "deductible"
    description = parts[3].strip() if len(parts) > 3 else None
    return Expense(concept=concept, amount=amount, deductible=deductible, description=description or None)

