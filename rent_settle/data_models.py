"""Data models for the rental settlement engine.

This module defines dataclasses representing the entities the engine reads
and produces: owners, properties, tenants and lease contracts coming from the
store; monthly settlements (liquidations); and the derived structures the
engine computes, such as the monthly rent split, the arrears summary of a
contract, receipts and the annual owner certificate. Using dataclasses makes
it easy to construct, inspect and serialize these structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

ZERO = Decimal("0.00")


@dataclass
class Owner:
    """The landlord of one or more properties.

    Attributes
    ----------
    management_fee_percent: Decimal
        Percentage of the gross rent kept by the agency, between 0 and 100.
        It is read every time a split is computed, so changing it changes
        every report computed afterwards, past periods included.
    """

    id: Optional[int]
    full_name: str
    tax_id: str
    management_fee_percent: Decimal
    is_company: bool = False
    co_owner: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    province: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class Property:
    id: Optional[int]
    owner_id: int
    address: str
    city: Optional[str] = None
    postal_code: Optional[str] = None
    province: Optional[str] = None


@dataclass
class Tenant:
    id: Optional[int]
    full_name: str
    national_id: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class ContractTenant:
    tenant: Tenant
    is_primary: bool = False


@dataclass
class Contract:
    """A lease contract over one property.

    ``premises`` and ``owner`` are filled in when the contract is loaded from
    the store with its joins. A contract that is not ``active`` accrues no
    arrears after ``deactivated_on``; when that date is unknown it accrues
    none at all.
    """

    id: Optional[int]
    property_id: int
    monthly_rent: Decimal
    start_date: date
    end_date: Optional[date] = None
    active: bool = True
    deactivated_on: Optional[date] = None
    tenants: List[ContractTenant] = field(default_factory=list)
    premises: Optional[Property] = None
    owner: Optional[Owner] = None

    @property
    def primary_tenant(self) -> Optional[Tenant]:
        for link in self.tenants:
            if link.is_primary:
                return link.tenant
        return self.tenants[0].tenant if self.tenants else None


@dataclass
class Settlement:
    """A recorded liquidation of one month of rent for a contract."""

    contract_id: int
    month: int
    year: int
    amount: Decimal
    settled_at: datetime
    notes: Optional[str] = None
    id: Optional[int] = None

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class MonthlySplit:
    """Gross rent broken down into management fee, VAT on the fee and net.

    Each value is rounded to cents on its own, so ``fee + vat + net`` may
    differ from ``gross`` by one cent.
    """

    gross: Decimal
    fee: Decimal
    vat: Decimal
    net: Decimal


@dataclass
class SettlementOutcome:
    """Result of settling one month within a range.

    Exactly one of ``settlement`` and ``error`` is set.
    """

    month: int
    year: int
    settlement: Optional[Settlement] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class ArrearsMonth:
    month: int
    year: int
    label: str
    amount_owed: Decimal
    months_late: int


@dataclass
class ArrearsSummary:
    """Outstanding debt of a contract as of a given date.

    Attributes
    ----------
    months_late: int
        Months late of the oldest pending month, 0 when nothing is pending.
    detail: List[ArrearsMonth]
        One entry per pending month in chronological order.
    """

    contract_id: Optional[int]
    as_of: date
    total_owed: Decimal = ZERO
    months_pending: int = 0
    first_pending_month: Optional[str] = None
    months_late: int = 0
    detail: List[ArrearsMonth] = field(default_factory=list)


@dataclass
class Expense:
    """An additional expense line on a receipt.

    Deductible expenses are subtracted from the owner's net amount;
    non-deductible ones are only listed.
    """

    concept: str
    amount: Decimal
    deductible: bool = True
    description: Optional[str] = None


@dataclass
class ReceiptLine:
    month: int
    year: int
    gross: Decimal
    fee: Decimal
    vat: Decimal
    net: Decimal
    is_late: bool = False


@dataclass
class Receipt:
    """A generated receipt covering one or more months of a contract."""

    number: str
    contract_id: int
    issued_on: date
    total_gross: Decimal
    total_fee: Decimal
    total_vat: Decimal
    total_net: Decimal
    lines: List[ReceiptLine] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[int] = None

    @property
    def deductible_expenses(self) -> Decimal:
        return sum((e.amount for e in self.expenses if e.deductible), ZERO)

    @property
    def non_deductible_expenses(self) -> Decimal:
        return sum((e.amount for e in self.expenses if not e.deductible), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return self.deductible_expenses + self.non_deductible_expenses

    @property
    def final_net(self) -> Decimal:
        return self.total_net - self.deductible_expenses

    @property
    def late_months(self) -> int:
        return sum(1 for line in self.lines if line.is_late)


@dataclass
class CertificateMonth:
    month: int
    year: int
    label: str
    gross: Decimal = ZERO
    fee: Decimal = ZERO
    vat: Decimal = ZERO
    net: Decimal = ZERO


@dataclass
class PropertyCertificate:
    premises: Property
    contract_count: int
    months: List[CertificateMonth]
    gross: Decimal = ZERO
    fee: Decimal = ZERO
    vat: Decimal = ZERO
    net: Decimal = ZERO


@dataclass
class AnnualCertificate:
    """Yearly income statement of an owner across all its properties.

    ``months`` always holds twelve rows, January first.
    """

    owner: Owner
    year: int
    issued_on: date
    properties: List[PropertyCertificate]
    months: List[CertificateMonth]
    gross: Decimal = ZERO
    fee: Decimal = ZERO
    vat: Decimal = ZERO
    net: Decimal = ZERO

    @property
    def property_count(self) -> int:
        return len(self.properties)

    @property
    def contract_count(self) -> int:
        return sum(p.contract_count for p in self.properties)
