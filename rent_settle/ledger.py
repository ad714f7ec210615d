"""Settlement lifecycle and arrears queries on top of the store.

``LedgerService`` is what the CLI and the web app call. It validates every
input before touching the store, resolves contracts (raising
``ContractNotFound``), and delegates the arithmetic to ``engine``.

Each (contract, month, year) is either pending (no settlement row) or
settled. Settling a settled month overwrites the row; unsettling a pending
month does nothing. A range is settled month by month and a failure on one
month does not stop the others: the caller gets one ``SettlementOutcome`` per
month and decides what to do with the failed ones.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from .data_models import (
    AnnualCertificate,
    ArrearsSummary,
    Contract,
    MonthlySplit,
    Settlement,
    SettlementOutcome,
)
from .engine import (
    DEFAULT_VAT_RATE,
    compute_annual_certificate,
    compute_arrears,
    compute_certificate_from_receipts,
    compute_monthly_split,
)
from .errors import (
    ContractNotFound,
    InvalidInput,
    InvalidRange,
    OwnerNotFound,
    PropertyNotFound,
    RentSettleError,
)
from .store import RentalStore
from .utils import iter_months, to_decimal, validate_period

logger = logging.getLogger(__name__)

CERTIFICATE_BASES = ("settlements", "receipts")


class LedgerService:
    def __init__(
        self,
        store: RentalStore,
        *,
        vat_rate=DEFAULT_VAT_RATE,
        earliest_period: Optional[date] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.vat_rate = to_decimal(vat_rate)
        self.earliest_period = earliest_period
        self._clock = clock

    # -- lookups -----------------------------------------------------------

    def contract(self, contract_id: int) -> Contract:
        contract = self.store.get_contract(contract_id)
        if contract is None:
            raise ContractNotFound(contract_id)
        return contract

    def fee_percent(self, contract: Contract) -> Decimal:
        """Current management fee of the contract's owner.

        Looked up on every call: a later change of the owner's percentage
        also changes the figures reported for earlier months.
        """
        if contract.owner is None:
            raise PropertyNotFound(contract.property_id)
        percent = self.store.owner_fee_percent(contract.owner.id)
        if percent is None:
            raise OwnerNotFound(contract.owner.id)
        return percent

    def monthly_split(self, contract_id: int) -> MonthlySplit:
        contract = self.contract(contract_id)
        return compute_monthly_split(contract.monthly_rent, self.fee_percent(contract), self.vat_rate)

    # -- settlement lifecycle ----------------------------------------------

    @staticmethod
    def _amount(value) -> Decimal:
        amount = to_decimal(value)
        if amount < 0:
            raise InvalidInput(f"Settled amount cannot be negative; got {amount}")
        return amount

    def settle_month(self, contract_id: int, month: int, year: int, amount, notes: Optional[str] = None) -> Settlement:
        """Record the settlement of one month, replacing any earlier one."""
        validate_period(month, year)
        amount = self._amount(amount)
        self.contract(contract_id)
        settlement = self.store.upsert_settlement(contract_id, month, year, amount, notes, self._clock())
        logger.info("Settled contract %s for %04d-%02d: %s", contract_id, year, month, amount)
        return settlement

    def settle_range(
        self,
        contract_id: int,
        from_month: int,
        from_year: int,
        to_month: int,
        to_year: int,
        amount_per_month,
        notes: Optional[str] = None,
    ) -> List[SettlementOutcome]:
        """Settle every month from ``from`` to ``to`` inclusive.

        Inputs are validated up front and raise. Failures while writing a
        month are caught and reported in that month's outcome; later months
        are still processed. Nothing is rolled back.
        """
        validate_period(from_month, from_year)
        validate_period(to_month, to_year)
        amount = self._amount(amount_per_month)
        first = date(from_year, from_month, 1)
        last = date(to_year, to_month, 1)
        if first > last:
            raise InvalidRange(
                f"Range start {from_year:04d}-{from_month:02d} is after its end {to_year:04d}-{to_month:02d}"
            )
        self.contract(contract_id)

        outcomes: List[SettlementOutcome] = []
        for month, year in iter_months(first, last):
            try:
                settlement = self.store.upsert_settlement(contract_id, month, year, amount, notes, self._clock())
            except RentSettleError as exc:
                logger.warning("Could not settle contract %s for %04d-%02d: %s", contract_id, year, month, exc)
                outcomes.append(SettlementOutcome(month=month, year=year, error=str(exc) or exc.__class__.__name__))
                continue
            outcomes.append(SettlementOutcome(month=month, year=year, settlement=settlement))

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            "Settled contract %s from %s to %s: %d ok, %d failed",
            contract_id,
            first.strftime("%Y-%m"),
            last.strftime("%Y-%m"),
            len(outcomes) - failed,
            failed,
        )
        return outcomes

    def unsettle_month(self, contract_id: int, month: int, year: int) -> bool:
        """Remove the settlement of one month. Returns whether one existed."""
        validate_period(month, year)
        removed = self.store.delete_settlement(contract_id, month, year)
        if removed:
            logger.info("Unsettled contract %s for %04d-%02d", contract_id, year, month)
        return removed

    def is_settled(self, contract_id: int, month: int, year: int) -> bool:
        validate_period(month, year)
        return self.store.get_settlement(contract_id, month, year) is not None

    def list_settlements(self, contract_id: int) -> List[Settlement]:
        self.contract(contract_id)
        return self.store.list_settlements(contract_id)

    def settlement_status(self, month: int, year: int) -> List[Tuple[Contract, Optional[Settlement]]]:
        """Active contracts with their settlement for one month, if any."""
        validate_period(month, year)
        return [
            (contract, self.store.get_settlement(contract.id, month, year))
            for contract in self.store.list_contracts(active_only=True)
        ]

    # -- arrears -----------------------------------------------------------

    def arrears(self, contract_id: int, as_of: Optional[date] = None) -> ArrearsSummary:
        contract = self.contract(contract_id)
        settled = [(s.month, s.year) for s in self.store.list_settlements(contract_id)]
        return compute_arrears(contract, settled, as_of or self._clock().date(), self.earliest_period)

    def debts_overview(self, as_of: Optional[date] = None) -> List[Tuple[Contract, ArrearsSummary]]:
        """Arrears of every contract in the store, largest debt first."""
        as_of = as_of or self._clock().date()
        contracts = self.store.list_contracts()
        settled = self.store.settlements_for_contracts(c.id for c in contracts)
        overview = [
            (
                contract,
                compute_arrears(
                    contract,
                    [(s.month, s.year) for s in settled.get(contract.id, [])],
                    as_of,
                    self.earliest_period,
                ),
            )
            for contract in contracts
        ]
        overview.sort(key=lambda item: (-item[1].total_owed, item[0].id))
        return overview

    # -- annual certificate ------------------------------------------------

    def annual_certificate(self, owner_id: int, year: int, basis: str = "settlements") -> AnnualCertificate:
        if basis not in CERTIFICATE_BASES:
            raise InvalidInput(f"Certificate basis must be one of {', '.join(CERTIFICATE_BASES)}; got {basis}")
        owner = self.store.get_owner(owner_id)
        if owner is None:
            raise OwnerNotFound(owner_id)
        holdings = self.store.holdings_for_owner(owner_id)
        contract_ids = [c.id for _, contracts in holdings for c in contracts]
        issued_on = self._clock().date()
        if basis == "receipts":
            receipts = {cid: self.store.list_receipts(contract_id=cid) for cid in contract_ids}
            return compute_certificate_from_receipts(owner, holdings, receipts, year, issued_on)
        settlements = self.store.settlements_for_contracts(contract_ids, year=year)
        return compute_annual_certificate(owner, holdings, settlements, year, self.vat_rate, issued_on)
