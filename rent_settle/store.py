"""Persistence layer for owners, contracts, settlements and receipts.

This module keeps the rental data in a relational database through
SQLAlchemy. It defaults to SQLite for local use, but accepts any
SQLAlchemy-compatible URL (e.g. PostgreSQL/MySQL). Rows are converted to the
dataclasses of ``data_models`` before leaving a session, so callers never
hold ORM objects.

Settlements are unique per (contract, month, year). Writing a settlement for
a period that already has one overwrites it, including when another writer
created that period a moment earlier: concurrent writes are last-commit-wins.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .data_models import (
    Contract,
    ContractTenant,
    Expense,
    Owner,
    Property,
    Receipt,
    ReceiptLine,
    Settlement,
    Tenant,
)
from .errors import (
    InvalidInput,
    OwnerNotFound,
    PropertyNotFound,
    StoreConflict,
    StoreFailure,
    TenantNotFound,
)

logger = logging.getLogger(__name__)

Base = declarative_base()

MONEY = Numeric(12, 2)

# backends with INSERT ... ON CONFLICT DO UPDATE
UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class OwnerModel(Base):
    __tablename__ = "owners"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(255), nullable=False)
    tax_id = Column(String(32), nullable=False)
    management_fee_percent = Column(Numeric(5, 2), nullable=False, default=0)
    is_company = Column(Boolean, nullable=False, default=False)
    co_owner = Column(String(255))
    street = Column(String(255))
    city = Column(String(120))
    postal_code = Column(String(16))
    province = Column(String(120))
    email = Column(String(255))
    phone = Column(String(32))
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    properties = relationship("PropertyModel", back_populates="owner")


class PropertyModel(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("owners.id"), index=True, nullable=False)
    address = Column(String(255), nullable=False)
    city = Column(String(120))
    postal_code = Column(String(16))
    province = Column(String(120))
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    owner = relationship("OwnerModel", back_populates="properties")
    contracts = relationship("ContractModel", back_populates="premises", order_by="ContractModel.id")


class TenantModel(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(255), nullable=False)
    national_id = Column(String(32), nullable=False)
    email = Column(String(255))
    phone = Column(String(32))
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class ContractTenantModel(Base):
    __tablename__ = "contract_tenants"
    __table_args__ = (UniqueConstraint("contract_id", "tenant_id", name="uq_contract_tenant"),)

    id = Column(Integer, primary_key=True)
    contract_id = Column(Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)

    tenant = relationship("TenantModel")


class ContractModel(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), index=True, nullable=False)
    monthly_rent = Column(MONEY, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    active = Column(Boolean, nullable=False, default=True)
    deactivated_on = Column(Date)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    premises = relationship("PropertyModel", back_populates="contracts")
    tenant_links = relationship(
        "ContractTenantModel", cascade="all, delete-orphan", order_by="ContractTenantModel.id"
    )


class SettlementModel(Base):
    __tablename__ = "settlements"
    __table_args__ = (UniqueConstraint("contract_id", "month", "year", name="uq_settlement_period"),)

    id = Column(Integer, primary_key=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), index=True, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    amount = Column(MONEY, nullable=False)
    settled_at = Column(DateTime, nullable=False)
    notes = Column(Text)


class ReceiptModel(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True)
    number = Column(String(64), unique=True, nullable=False)
    contract_id = Column(Integer, ForeignKey("contracts.id"), index=True, nullable=False)
    issued_on = Column(Date, nullable=False)
    total_gross = Column(MONEY, nullable=False)
    total_fee = Column(MONEY, nullable=False)
    total_vat = Column(MONEY, nullable=False)
    total_net = Column(MONEY, nullable=False)
    payment_method = Column(String(64))
    payment_reference = Column(String(128))
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    lines = relationship(
        "ReceiptLineModel", cascade="all, delete-orphan", order_by="ReceiptLineModel.id"
    )
    expenses = relationship("ReceiptExpenseModel", cascade="all, delete-orphan", order_by="ReceiptExpenseModel.id")


class ReceiptLineModel(Base):
    __tablename__ = "receipt_lines"

    id = Column(Integer, primary_key=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id", ondelete="CASCADE"), index=True, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    gross = Column(MONEY, nullable=False)
    fee = Column(MONEY, nullable=False)
    vat = Column(MONEY, nullable=False)
    net = Column(MONEY, nullable=False)
    is_late = Column(Boolean, nullable=False, default=False)


class ReceiptExpenseModel(Base):
    __tablename__ = "receipt_expenses"

    id = Column(Integer, primary_key=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id", ondelete="CASCADE"), index=True, nullable=False)
    concept = Column(String(120), nullable=False)
    amount = Column(MONEY, nullable=False)
    deductible = Column(Boolean, nullable=False, default=True)
    description = Column(Text)


class RentalStore:
    """Database-backed store for the rental ledger."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._engine = create_engine(url, future=True, echo=echo)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    @contextmanager
    def _session(self) -> Iterator:
        """Open a session, commit on success and wrap ORM errors."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise StoreConflict(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Store operation failed")
            raise StoreFailure(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -- owners, properties, tenants ---------------------------------------

    def add_owner(self, owner: Owner) -> Owner:
        row = OwnerModel(
            full_name=owner.full_name,
            tax_id=owner.tax_id,
            management_fee_percent=owner.management_fee_percent,
            is_company=owner.is_company,
            co_owner=owner.co_owner,
            street=owner.street,
            city=owner.city,
            postal_code=owner.postal_code,
            province=owner.province,
            email=owner.email,
            phone=owner.phone,
        )
        with self._session() as session:
            session.add(row)
            session.flush()
            return self._to_owner(row)

    def get_owner(self, owner_id: int) -> Optional[Owner]:
        with self._session() as session:
            row = session.get(OwnerModel, owner_id)
            return self._to_owner(row) if row else None

    def list_owners(self) -> List[Owner]:
        with self._session() as session:
            rows = session.execute(select(OwnerModel).order_by(OwnerModel.full_name)).scalars()
            return [self._to_owner(row) for row in rows]

    def set_owner_fee(self, owner_id: int, percent: Decimal) -> bool:
        with self._session() as session:
            row = session.get(OwnerModel, owner_id)
            if row is None:
                return False
            row.management_fee_percent = percent
            return True

    def owner_fee_percent(self, owner_id: int) -> Optional[Decimal]:
        with self._session() as session:
            row = session.get(OwnerModel, owner_id)
            return Decimal(row.management_fee_percent) if row else None

    def add_property(self, premises: Property) -> Property:
        with self._session() as session:
            if session.get(OwnerModel, premises.owner_id) is None:
                raise OwnerNotFound(premises.owner_id)
            row = PropertyModel(
                owner_id=premises.owner_id,
                address=premises.address,
                city=premises.city,
                postal_code=premises.postal_code,
                province=premises.province,
            )
            session.add(row)
            session.flush()
            return self._to_property(row)

    def add_tenant(self, tenant: Tenant) -> Tenant:
        row = TenantModel(
            full_name=tenant.full_name,
            national_id=tenant.national_id,
            email=tenant.email,
            phone=tenant.phone,
        )
        with self._session() as session:
            session.add(row)
            session.flush()
            return self._to_tenant(row)

    # -- contracts ---------------------------------------------------------

    def add_contract(self, contract: Contract, tenant_ids: Sequence[int] = (), primary_tenant_id: Optional[int] = None) -> Contract:
        """Insert a contract and link its tenants.

        When ``primary_tenant_id`` is not given the first tenant is primary.
        """
        if primary_tenant_id is None and tenant_ids:
            primary_tenant_id = tenant_ids[0]
        with self._session() as session:
            if session.get(PropertyModel, contract.property_id) is None:
                raise PropertyNotFound(contract.property_id)
            row = ContractModel(
                property_id=contract.property_id,
                monthly_rent=contract.monthly_rent,
                start_date=contract.start_date,
                end_date=contract.end_date,
                active=contract.active,
                deactivated_on=contract.deactivated_on,
            )
            for tenant_id in dict.fromkeys(tenant_ids):
                if session.get(TenantModel, tenant_id) is None:
                    raise TenantNotFound(tenant_id)
                row.tenant_links.append(
                    ContractTenantModel(tenant_id=tenant_id, is_primary=tenant_id == primary_tenant_id)
                )
            session.add(row)
            session.flush()
            return self._to_contract(row)

    def get_contract(self, contract_id: int) -> Optional[Contract]:
        """Load a contract with its property, owner and tenants."""
        with self._session() as session:
            row = session.get(ContractModel, contract_id)
            return self._to_contract(row) if row else None

    def list_contracts(self, active_only: bool = False) -> List[Contract]:
        with self._session() as session:
            query = select(ContractModel).order_by(ContractModel.start_date.desc(), ContractModel.id)
            if active_only:
                query = query.where(ContractModel.active.is_(True))
            return [self._to_contract(row) for row in session.execute(query).scalars()]

    def update_contract(
        self,
        contract_id: int,
        *,
        monthly_rent: Optional[Decimal] = None,
        end_date: Optional[date] = None,
        clear_end_date: bool = False,
    ) -> Optional[Contract]:
        """Change the rent or end date on renewal; returns ``None`` if unknown.

        ``clear_end_date`` makes the contract open-ended again.
        """
        with self._session() as session:
            row = session.get(ContractModel, contract_id)
            if row is None:
                return None
            if monthly_rent is not None:
                row.monthly_rent = monthly_rent
            if clear_end_date:
                row.end_date = None
            elif end_date is not None:
                row.end_date = end_date
            session.flush()
            return self._to_contract(row)

    def deactivate_contract(self, contract_id: int, on: date) -> Optional[Contract]:
        with self._session() as session:
            row = session.get(ContractModel, contract_id)
            if row is None:
                return None
            row.active = False
            row.deactivated_on = on
            session.flush()
            return self._to_contract(row)

    def holdings_for_owner(self, owner_id: int) -> List[Tuple[Property, List[Contract]]]:
        """Return each property of the owner with its contracts."""
        with self._session() as session:
            rows = session.execute(
                select(PropertyModel).where(PropertyModel.owner_id == owner_id).order_by(PropertyModel.id)
            ).scalars()
            return [
                (self._to_property(row), [self._to_contract(c) for c in row.contracts])
                for row in rows
            ]

    # -- settlements -------------------------------------------------------

    def upsert_settlement(
        self,
        contract_id: int,
        month: int,
        year: int,
        amount: Decimal,
        notes: Optional[str],
        settled_at: datetime,
    ) -> Settlement:
        """Create or overwrite the settlement of one period.

        SQLite and PostgreSQL get a single ``INSERT ... ON CONFLICT DO
        UPDATE``. Other backends read then write, and a period inserted by
        someone else in between is overwritten with an ``UPDATE``.
        """
        values = {
            "contract_id": contract_id,
            "month": month,
            "year": year,
            "amount": amount,
            "notes": notes,
            "settled_at": settled_at,
        }
        dialect_insert = UPSERT_INSERTS.get(self._engine.dialect.name)
        if dialect_insert is not None:
            stmt = dialect_insert(SettlementModel.__table__).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["contract_id", "month", "year"],
                set_={
                    "amount": stmt.excluded.amount,
                    "notes": stmt.excluded.notes,
                    "settled_at": stmt.excluded.settled_at,
                },
            )
            with self._session() as session:
                session.execute(stmt)
                return self._to_settlement(self._settlement_row(session, contract_id, month, year))

        try:
            with self._session() as session:
                row = self._settlement_row(session, contract_id, month, year)
                if row is None:
                    row = SettlementModel(contract_id=contract_id, month=month, year=year)
                    session.add(row)
                row.amount = amount
                row.notes = notes
                row.settled_at = settled_at
                session.flush()
                return self._to_settlement(row)
        except StoreConflict:
            logger.info("Settlement %04d-%02d of contract %s inserted concurrently; overwriting", year, month, contract_id)
        with self._session() as session:
            session.execute(
                SettlementModel.__table__.update()
                .where(
                    SettlementModel.contract_id == contract_id,
                    SettlementModel.month == month,
                    SettlementModel.year == year,
                )
                .values(amount=amount, notes=notes, settled_at=settled_at)
            )
            return self._to_settlement(self._settlement_row(session, contract_id, month, year))

    @staticmethod
    def _settlement_row(session, contract_id: int, month: int, year: int) -> Optional[SettlementModel]:
        return session.execute(
            select(SettlementModel).where(
                SettlementModel.contract_id == contract_id,
                SettlementModel.month == month,
                SettlementModel.year == year,
            )
        ).scalar_one_or_none()

    def delete_settlement(self, contract_id: int, month: int, year: int) -> bool:
        with self._session() as session:
            result = session.execute(
                SettlementModel.__table__.delete().where(
                    SettlementModel.contract_id == contract_id,
                    SettlementModel.month == month,
                    SettlementModel.year == year,
                )
            )
            return result.rowcount > 0

    def get_settlement(self, contract_id: int, month: int, year: int) -> Optional[Settlement]:
        with self._session() as session:
            row = session.execute(
                select(SettlementModel).where(
                    SettlementModel.contract_id == contract_id,
                    SettlementModel.month == month,
                    SettlementModel.year == year,
                )
            ).scalar_one_or_none()
            return self._to_settlement(row) if row else None

    def list_settlements(self, contract_id: int) -> List[Settlement]:
        """All settlements of a contract, newest period first."""
        with self._session() as session:
            rows = session.execute(
                select(SettlementModel)
                .where(SettlementModel.contract_id == contract_id)
                .order_by(SettlementModel.year.desc(), SettlementModel.month.desc())
            ).scalars()
            return [self._to_settlement(row) for row in rows]

    def settlements_for_contracts(self, contract_ids: Iterable[int], year: Optional[int] = None) -> Dict[int, List[Settlement]]:
        ids = list(contract_ids)
        grouped: Dict[int, List[Settlement]] = {cid: [] for cid in ids}
        if not ids:
            return grouped
        with self._session() as session:
            query = select(SettlementModel).where(SettlementModel.contract_id.in_(ids))
            if year is not None:
                query = query.where(SettlementModel.year == year)
            query = query.order_by(SettlementModel.year, SettlementModel.month)
            for row in session.execute(query).scalars():
                grouped[row.contract_id].append(self._to_settlement(row))
        return grouped

    # -- receipts ----------------------------------------------------------

    def add_receipt(self, receipt: Receipt) -> Receipt:
        row = ReceiptModel(
            number=receipt.number,
            contract_id=receipt.contract_id,
            issued_on=receipt.issued_on,
            total_gross=receipt.total_gross,
            total_fee=receipt.total_fee,
            total_vat=receipt.total_vat,
            total_net=receipt.total_net,
            payment_method=receipt.payment_method,
            payment_reference=receipt.payment_reference,
            notes=receipt.notes,
        )
        for line in receipt.lines:
            row.lines.append(
                ReceiptLineModel(
                    month=line.month,
                    year=line.year,
                    gross=line.gross,
                    fee=line.fee,
                    vat=line.vat,
                    net=line.net,
                    is_late=line.is_late,
                )
            )
        for expense in receipt.expenses:
            row.expenses.append(
                ReceiptExpenseModel(
                    concept=expense.concept,
                    amount=expense.amount,
                    deductible=expense.deductible,
                    description=expense.description,
                )
            )
        try:
            with self._session() as session:
                session.add(row)
                session.flush()
                return self._to_receipt(row)
        except StoreConflict as exc:
            raise InvalidInput(f"Receipt number {receipt.number} already exists") from exc

    def get_receipt(self, receipt_id: int) -> Optional[Receipt]:
        with self._session() as session:
            row = session.get(ReceiptModel, receipt_id)
            return self._to_receipt(row) if row else None

    def list_receipts(self, contract_id: Optional[int] = None, year: Optional[int] = None) -> List[Receipt]:
        """Receipts, most recently issued first."""
        with self._session() as session:
            query = select(ReceiptModel)
            if contract_id is not None:
                query = query.where(ReceiptModel.contract_id == contract_id)
            if year is not None:
                query = query.where(
                    ReceiptModel.issued_on >= date(year, 1, 1),
                    ReceiptModel.issued_on <= date(year, 12, 31),
                )
            query = query.order_by(ReceiptModel.issued_on.desc(), ReceiptModel.id.desc())
            return [self._to_receipt(row) for row in session.execute(query).scalars()]

    def receipt_numbers_with_prefix(self, prefix: str) -> List[str]:
        with self._session() as session:
            return list(
                session.execute(select(ReceiptModel.number).where(ReceiptModel.number.startswith(prefix))).scalars()
            )

    def delete_receipt(self, receipt_id: int) -> bool:
        with self._session() as session:
            row = session.get(ReceiptModel, receipt_id)
            if row is None:
                return False
            session.delete(row)
            return True

    # -- row conversion ----------------------------------------------------

    @staticmethod
    def _to_owner(row: OwnerModel) -> Owner:
        return Owner(
            id=row.id,
            full_name=row.full_name,
            tax_id=row.tax_id,
            management_fee_percent=Decimal(row.management_fee_percent),
            is_company=bool(row.is_company),
            co_owner=row.co_owner,
            street=row.street,
            city=row.city,
            postal_code=row.postal_code,
            province=row.province,
            email=row.email,
            phone=row.phone,
        )

    @staticmethod
    def _to_property(row: PropertyModel) -> Property:
        return Property(
            id=row.id,
            owner_id=row.owner_id,
            address=row.address,
            city=row.city,
            postal_code=row.postal_code,
            province=row.province,
        )

    @staticmethod
    def _to_tenant(row: TenantModel) -> Tenant:
        return Tenant(
            id=row.id,
            full_name=row.full_name,
            national_id=row.national_id,
            email=row.email,
            phone=row.phone,
        )

    @classmethod
    def _to_contract(cls, row: ContractModel) -> Contract:
        premises = row.premises
        return Contract(
            id=row.id,
            property_id=row.property_id,
            monthly_rent=Decimal(row.monthly_rent),
            start_date=row.start_date,
            end_date=row.end_date,
            active=bool(row.active),
            deactivated_on=row.deactivated_on,
            tenants=[
                ContractTenant(tenant=cls._to_tenant(link.tenant), is_primary=bool(link.is_primary))
                for link in row.tenant_links
            ],
            premises=cls._to_property(premises) if premises else None,
            owner=cls._to_owner(premises.owner) if premises and premises.owner else None,
        )

    @staticmethod
    def _to_settlement(row: SettlementModel) -> Settlement:
        return Settlement(
            id=row.id,
            contract_id=row.contract_id,
            month=row.month,
            year=row.year,
            amount=Decimal(row.amount),
            settled_at=row.settled_at,
            notes=row.notes,
        )

    @staticmethod
    def _to_receipt(row: ReceiptModel) -> Receipt:
        return Receipt(
            id=row.id,
            number=row.number,
            contract_id=row.contract_id,
            issued_on=row.issued_on,
            total_gross=Decimal(row.total_gross),
            total_fee=Decimal(row.total_fee),
            total_vat=Decimal(row.total_vat),
            total_net=Decimal(row.total_net),
            payment_method=row.payment_method,
            payment_reference=row.payment_reference,
            notes=row.notes,
            lines=[
                ReceiptLine(
                    month=line.month,
                    year=line.year,
                    gross=Decimal(line.gross),
                    fee=Decimal(line.fee),
                    vat=Decimal(line.vat),
                    net=Decimal(line.net),
                    is_late=bool(line.is_late),
                )
                for line in row.lines
            ],
            expenses=[
                Expense(
                    concept=e.concept,
                    amount=Decimal(e.amount),
                    deductible=bool(e.deductible),
                    description=e.description,
                )
                for e in row.expenses
            ],
        )


def create_store_from_env(url: str | None) -> RentalStore:
    return RentalStore(url or "sqlite:///rent_settle.sqlite3")
