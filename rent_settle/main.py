"""Command-line interface for the rent ledger.

This module uses the ``click`` library to implement a multi-command
interface. Users can register owners, properties, tenants and contracts,
settle and unsettle months, inspect arrears, issue receipts and produce the
annual certificate of an owner. Results are printed to the terminal or
exported to JSON, CSV or PDF files.
"""

from __future__ import annotations

import csv
import functools
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional, Tuple

import click

from .config import Settings, configure_logging
from .data_models import ArrearsSummary, Contract, Owner, Property, Settlement, Tenant
from .engine import compute_monthly_split
from .errors import InvalidInput, RentSettleError
from .formatter import (
    print_arrears,
    print_certificate,
    print_debts,
    print_range_outcomes,
    print_receipt,
    print_receipts,
    print_settlements,
    print_split,
    print_status,
)
from .ledger import CERTIFICATE_BASES, LedgerService
from .receipts import PAYMENT_METHODS, ReceiptService, consecutive_periods, parse_expense
from .serializers import (
    arrears_to_dict,
    certificate_to_dict,
    contract_to_dict,
    outcome_to_dict,
    settlement_to_dict,
    split_to_dict,
)
from .store import RentalStore, create_store_from_env
from .utils import decimal_from_str, parse_date, parse_year_month


class AppContext:
    """Lazily opened store and services shared by the commands."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._store: Optional[RentalStore] = None
        self._ledger: Optional[LedgerService] = None

    @property
    def store(self) -> RentalStore:
        if self._store is None:
            self._store = create_store_from_env(self.settings.database_url)
        return self._store

    @property
    def ledger(self) -> LedgerService:
        if self._ledger is None:
            self._ledger = LedgerService(
                self.store,
                vat_rate=self.settings.vat_rate,
                earliest_period=self.settings.earliest_period,
            )
        return self._ledger

    @property
    def receipts(self) -> ReceiptService:
        return ReceiptService(self.ledger)


pass_app = click.make_pass_decorator(AppContext)


def reports_errors(func):
    """Turn engine errors into click errors with a readable message."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except InvalidInput as exc:
            raise click.BadParameter(str(exc))
        except RentSettleError as exc:
            raise click.ClickException(str(exc))

    return wrapper


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with optional suffixes.

    Accepts plain numbers ("850.50") and shorthand with a ``k`` suffix
    (e.g. "1.2k" meaning 1200). Returns a ``Decimal``.
    """
    value = value.strip().lower().replace(",", "")
    factor = Decimal(1)
    if value.endswith("k"):
        factor = Decimal(1000)
        value = value[:-1]
    try:
        return decimal_from_str(value) * factor
    except InvalidInput:
        raise click.BadParameter(f"Invalid amount: {value}")


def parse_percent(value: str) -> Decimal:
    """Parse a percentage string (e.g. "10" or "10%")."""
    value = value.strip()
    if value.endswith("%"):
        value = value[:-1]
    try:
        return decimal_from_str(value)
    except InvalidInput:
        raise click.BadParameter(f"Invalid percentage: {value}")


def parse_period(value: str) -> Tuple[int, int]:
    try:
        dt = parse_year_month(value)
    except InvalidInput as exc:
        raise click.BadParameter(str(exc))
    return dt.month, dt.year


def parse_optional_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return parse_date(value)
    except InvalidInput as exc:
        raise click.BadParameter(str(exc))


def export_to_json(path: Path, data: Any) -> None:
    """Export a serialisable structure to a JSON file."""
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_settlements_csv(path: Path, rows: List[Settlement]) -> None:
    """Export settlements to a CSV file."""
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Period", "Amount", "Settled_At", "Notes"])
        for s in rows:
            writer.writerow([s.period, float(s.amount), s.settled_at.isoformat(), s.notes or ""])


def export_arrears_csv(path: Path, summary: ArrearsSummary) -> None:
    """Export the pending months of a contract to a CSV file."""
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Month", "Year", "Label", "Amount_Owed", "Months_Late"])
        for m in summary.detail:
            writer.writerow([m.month, m.year, m.label, float(m.amount_owed), m.months_late])


@click.group()
@click.option("--database-url", "database_url", envvar="RENT_SETTLE_DATABASE_URL", help="SQLAlchemy database URL")
@click.option("--verbose", "-v", "verbose", is_flag=True, help="Log store and ledger activity")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], verbose: bool) -> None:
    """Rental settlements, arrears and receipts from the command line."""
    settings = Settings.from_env()
    if database_url:
        settings.database_url = database_url
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = AppContext(settings)


# -- master data -------------------------------------------------------------


@cli.group()
def owner() -> None:
    """Manage owners."""


@owner.command("add")
@click.option("--name", "full_name", required=True, help="Full name or company name")
@click.option("--tax-id", "tax_id", required=True, help="DNI/CIF")
@click.option("--fee", "fee", required=True, help="Management fee percentage (0-100)")
@click.option("--company", "is_company", is_flag=True, help="Owner is a company")
@click.option("--email", "email", help="Contact email")
@click.option("--phone", "phone", help="Contact phone")
@pass_app
@reports_errors
def owner_add(app: AppContext, full_name: str, tax_id: str, fee: str, is_company: bool, email: Optional[str], phone: Optional[str]) -> None:
    """Register an owner."""
    percent = parse_percent(fee)
    if not Decimal(0) <= percent <= Decimal(100):
        raise click.BadParameter(f"Management fee must be between 0 and 100; got {percent}")
    created = app.store.add_owner(
        Owner(id=None, full_name=full_name, tax_id=tax_id, management_fee_percent=percent,
              is_company=is_company, email=email, phone=phone)
    )
    click.echo(f"Owner {created.id} created")


@owner.command("list")
@pass_app
@reports_errors
def owner_list(app: AppContext) -> None:
    """List owners."""
    for o in app.store.list_owners():
        click.echo(f"{o.id}\t{o.full_name}\t{o.tax_id}\t{o.management_fee_percent}%")


@owner.command("set-fee")
@click.argument("owner_id", type=int)
@click.argument("fee")
@pass_app
@reports_errors
def owner_set_fee(app: AppContext, owner_id: int, fee: str) -> None:
    """Change an owner's management fee.

    The new percentage applies to every figure computed afterwards, past
    months included.
    """
    percent = parse_percent(fee)
    if not Decimal(0) <= percent <= Decimal(100):
        raise click.BadParameter(f"Management fee must be between 0 and 100; got {percent}")
    if not app.store.set_owner_fee(owner_id, percent):
        raise click.ClickException(f"Owner {owner_id} not found")
    click.echo(f"Owner {owner_id} fee set to {percent}%")


@cli.group("property")
def property_group() -> None:
    """Manage properties."""


@property_group.command("add")
@click.option("--owner", "owner_id", required=True, type=int, help="Owner id")
@click.option("--address", "address", required=True, help="Full address")
@click.option("--city", "city", help="City")
@click.option("--postal-code", "postal_code", help="Postal code")
@pass_app
@reports_errors
def property_add(app: AppContext, owner_id: int, address: str, city: Optional[str], postal_code: Optional[str]) -> None:
    """Register a property."""
    created = app.store.add_property(Property(id=None, owner_id=owner_id, address=address, city=city, postal_code=postal_code))
    click.echo(f"Property {created.id} created")


@cli.group()
def tenant() -> None:
    """Manage tenants."""


@tenant.command("add")
@click.option("--name", "full_name", required=True, help="Full name")
@click.option("--national-id", "national_id", required=True, help="DNI/NIE")
@click.option("--email", "email", help="Contact email")
@click.option("--phone", "phone", help="Contact phone")
@pass_app
@reports_errors
def tenant_add(app: AppContext, full_name: str, national_id: str, email: Optional[str], phone: Optional[str]) -> None:
    """Register a tenant."""
    created = app.store.add_tenant(Tenant(id=None, full_name=full_name, national_id=national_id, email=email, phone=phone))
    click.echo(f"Tenant {created.id} created")


@cli.group()
def contract() -> None:
    """Manage lease contracts."""


@contract.command("add")
@click.option("--property", "property_id", required=True, type=int, help="Property id")
@click.option("--rent", "rent", required=True, help="Monthly rent")
@click.option("--start", "start", required=True, help="Start date (YYYY-MM-DD)")
@click.option("--end", "end", help="End date (YYYY-MM-DD)")
@click.option("--tenant", "tenant_ids", multiple=True, type=int, help="Tenant id; repeat for several tenants")
@click.option("--primary", "primary_id", type=int, help="Primary tenant id (defaults to the first)")
@pass_app
@reports_errors
def contract_add(
    app: AppContext,
    property_id: int,
    rent: str,
    start: str,
    end: Optional[str],
    tenant_ids: Tuple[int, ...],
    primary_id: Optional[int],
) -> None:
    """Register a lease contract."""
    amount = parse_amount(rent)
    if amount < 0:
        raise click.BadParameter(f"Monthly rent cannot be negative; got {amount}")
    if primary_id is not None and primary_id not in tenant_ids:
        raise click.BadParameter("The primary tenant must be one of the contract tenants")
    created = app.store.add_contract(
        Contract(
            id=None,
            property_id=property_id,
            monthly_rent=amount,
            start_date=parse_optional_date(start),
            end_date=parse_optional_date(end),
        ),
        tenant_ids=tenant_ids,
        primary_tenant_id=primary_id,
    )
    click.echo(f"Contract {created.id} created")


@contract.command("list")
@click.option("--active", "active_only", is_flag=True, help="Only active contracts")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@pass_app
@reports_errors
def contract_list(app: AppContext, active_only: bool, output: Optional[str]) -> None:
    """List contracts."""
    contracts = app.store.list_contracts(active_only=active_only)
    if output:
        export_to_json(Path(output), [contract_to_dict(c) for c in contracts])
        click.echo(f"Contracts exported to {output}")
        return
    for c in contracts:
        tenant_name = c.primary_tenant.full_name if c.primary_tenant else "-"
        address = c.premises.address if c.premises else "-"
        state = "active" if c.active else "inactive"
        click.echo(f"{c.id}\t{address}\t{tenant_name}\t{c.monthly_rent:.2f}\t{c.start_date.isoformat()}\t{state}")


@contract.command("update")
@click.argument("contract_id", type=int)
@click.option("--rent", "rent", help="New monthly rent")
@click.option("--end", "end", help="New end date (YYYY-MM-DD)")
@click.option("--no-end", "no_end", is_flag=True, help="Remove the end date (open-ended contract)")
@pass_app
@reports_errors
def contract_update(app: AppContext, contract_id: int, rent: Optional[str], end: Optional[str], no_end: bool) -> None:
    """Change the rent or end date of a contract (renewal)."""
    if end and no_end:
        raise click.BadParameter("Use either --end or --no-end, not both")
    amount = parse_amount(rent) if rent else None
    if amount is not None and amount < 0:
        raise click.BadParameter(f"Monthly rent cannot be negative; got {amount}")
    updated = app.store.update_contract(
        contract_id, monthly_rent=amount, end_date=parse_optional_date(end), clear_end_date=no_end
    )
    if updated is None:
        raise click.ClickException(f"Contract {contract_id} not found")
    click.echo(f"Contract {contract_id} updated")


@contract.command("deactivate")
@click.argument("contract_id", type=int)
@click.option("--on", "on", help="Deactivation date (YYYY-MM-DD), today by default")
@pass_app
@reports_errors
def contract_deactivate(app: AppContext, contract_id: int, on: Optional[str]) -> None:
    """Deactivate a contract; it stops accruing arrears after that month."""
    when = parse_optional_date(on) or date.today()
    if app.store.deactivate_contract(contract_id, when) is None:
        raise click.ClickException(f"Contract {contract_id} not found")
    click.echo(f"Contract {contract_id} deactivated on {when.isoformat()}")


# -- settlements -------------------------------------------------------------


@cli.command()
@click.option("--rent", "rent", help="Gross monthly rent")
@click.option("--fee", "fee", help="Management fee percentage")
@click.option("--vat", "vat", help="VAT rate on the fee (percent)")
@click.option("--contract", "contract_id", type=int, help="Use the rent and owner fee of a contract")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@pass_app
@reports_errors
def split(app: AppContext, rent: Optional[str], fee: Optional[str], vat: Optional[str], contract_id: Optional[int], output: Optional[str]) -> None:
    """Compute the monthly fee/VAT/net split of a rent."""
    vat_rate = parse_percent(vat) if vat else app.settings.vat_rate
    if contract_id is not None:
        found = app.ledger.contract(contract_id)
        result = compute_monthly_split(found.monthly_rent, app.ledger.fee_percent(found), vat_rate)
    else:
        if not rent or fee is None:
            raise click.BadParameter("Either --contract or both --rent and --fee are required")
        result = compute_monthly_split(parse_amount(rent), parse_percent(fee), vat_rate)
    if output:
        export_to_json(Path(output), split_to_dict(result))
        click.echo(f"Split exported to {output}")
    else:
        print_split(result)


@cli.command()
@click.argument("contract_id", type=int)
@click.argument("period")
@click.option("--amount", "amount", help="Settled amount (defaults to the contract rent)")
@click.option("--notes", "notes", help="Notes, e.g. about a late payment")
@pass_app
@reports_errors
def settle(app: AppContext, contract_id: int, period: str, amount: Optional[str], notes: Optional[str]) -> None:
    """Settle one month (YYYY-MM) of a contract, replacing any earlier settlement."""
    month, year = parse_period(period)
    value = parse_amount(amount) if amount else app.ledger.contract(contract_id).monthly_rent
    settlement = app.ledger.settle_month(contract_id, month, year, value, notes)
    click.echo(f"Settled {settlement.period} for contract {contract_id}: {settlement.amount:.2f}")


@cli.command("settle-range")
@click.argument("contract_id", type=int)
@click.argument("first")
@click.argument("last")
@click.option("--amount", "amount", help="Amount per month (defaults to the contract rent)")
@click.option("--notes", "notes", help="Notes stored on every month")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@pass_app
@reports_errors
def settle_range(app: AppContext, contract_id: int, first: str, last: str, amount: Optional[str], notes: Optional[str], output: Optional[str]) -> None:
    """Settle every month from FIRST to LAST (YYYY-MM), continuing past failures."""
    from_month, from_year = parse_period(first)
    to_month, to_year = parse_period(last)
    value = parse_amount(amount) if amount else app.ledger.contract(contract_id).monthly_rent
    outcomes = app.ledger.settle_range(contract_id, from_month, from_year, to_month, to_year, value, notes)
    if output:
        export_to_json(Path(output), [outcome_to_dict(o) for o in outcomes])
        click.echo(f"Outcomes exported to {output}")
    else:
        print_range_outcomes(outcomes)
    if any(not o.ok for o in outcomes):
        raise click.exceptions.Exit(1)


@cli.command()
@click.argument("contract_id", type=int)
@click.argument("period")
@pass_app
@reports_errors
def unsettle(app: AppContext, contract_id: int, period: str) -> None:
    """Remove the settlement of one month (YYYY-MM)."""
    month, year = parse_period(period)
    if app.ledger.unsettle_month(contract_id, month, year):
        click.echo(f"Unsettled {year:04d}-{month:02d} for contract {contract_id}")
    else:
        click.echo(f"{year:04d}-{month:02d} was not settled for contract {contract_id}")


@cli.command()
@click.argument("period")
@pass_app
@reports_errors
def status(app: AppContext, period: str) -> None:
    """Show which active contracts are settled for PERIOD (YYYY-MM)."""
    month, year = parse_period(period)
    print_status(app.ledger.settlement_status(month, year), month, year)


@cli.command()
@click.argument("contract_id", type=int)
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
@pass_app
@reports_errors
def settlements(app: AppContext, contract_id: int, output: Optional[str]) -> None:
    """List the settlements of a contract, newest first."""
    rows = app.ledger.list_settlements(contract_id)
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, [settlement_to_dict(s) for s in rows])
        elif path.suffix.lower() == ".csv":
            export_settlements_csv(path, rows)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Settlements exported to {path}")
    else:
        print_settlements(rows)


# -- arrears and reports -----------------------------------------------------


@cli.command()
@click.argument("contract_id", type=int)
@click.option("--as-of", "as_of", help="Evaluation date (YYYY-MM-DD), today by default")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
@pass_app
@reports_errors
def arrears(app: AppContext, contract_id: int, as_of: Optional[str], output: Optional[str]) -> None:
    """Show the unsettled months of a contract and the amount owed."""
    summary = app.ledger.arrears(contract_id, parse_optional_date(as_of))
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, arrears_to_dict(summary))
        elif path.suffix.lower() == ".csv":
            export_arrears_csv(path, summary)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Arrears exported to {path}")
    else:
        print_arrears(summary, app.ledger.contract(contract_id))


@cli.command()
@click.option("--as-of", "as_of", help="Evaluation date (YYYY-MM-DD), today by default")
@click.option("--all", "show_all", is_flag=True, help="Include contracts without debts")
@pass_app
@reports_errors
def debts(app: AppContext, as_of: Optional[str], show_all: bool) -> None:
    """List the outstanding debt of every contract."""
    print_debts(app.ledger.debts_overview(parse_optional_date(as_of)), show_all=show_all)


@cli.command()
@click.argument("owner_id", type=int)
@click.argument("year", type=int)
@click.option("--basis", "basis", type=click.Choice(CERTIFICATE_BASES), default="settlements", help="Aggregate settlements or issued receipts")
@click.option("--output", "output", type=str, help="Output file path (.json or .pdf)")
@pass_app
@reports_errors
def annual(app: AppContext, owner_id: int, year: int, basis: str, output: Optional[str]) -> None:
    """Annual income certificate of an owner."""
    certificate = app.ledger.annual_certificate(owner_id, year, basis)
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, certificate_to_dict(certificate, basis))
        elif path.suffix.lower() == ".pdf":
            from .pdf import render_certificate_pdf

            path.write_bytes(render_certificate_pdf(certificate, app.settings.agency))
        else:
            raise click.BadParameter("Unsupported output format; use .json or .pdf")
        click.echo(f"Certificate exported to {path}")
    else:
        print_certificate(certificate)


# -- receipts ----------------------------------------------------------------


@cli.group()
def receipt() -> None:
    """Issue and manage receipts."""


@receipt.command("issue")
@click.argument("contract_id", type=int)
@click.option("--from", "first", required=True, help="First month (YYYY-MM)")
@click.option("--months", "months", type=int, default=1, show_default=True, help="Number of consecutive months")
@click.option("--expense", "expense", multiple=True, help="Expense in CONCEPT:AMOUNT[:deductible|non-deductible[:DESCRIPTION]] format")
@click.option("--number", "number", help="Receipt number (generated when omitted)")
@click.option("--payment-method", "payment_method", type=click.Choice(PAYMENT_METHODS), help="How the tenant paid")
@click.option("--reference", "reference", help="Payment reference")
@click.option("--notes", "notes", help="Notes printed on the receipt")
@click.option("--pdf", "pdf_path", type=str, help="Also write the receipt PDF to this path")
@pass_app
@reports_errors
def receipt_issue(
    app: AppContext,
    contract_id: int,
    first: str,
    months: int,
    expense: Tuple[str, ...],
    number: Optional[str],
    payment_method: Optional[str],
    reference: Optional[str],
    notes: Optional[str],
    pdf_path: Optional[str],
) -> None:
    """Issue a receipt for consecutive months of a contract."""
    month, year = parse_period(first)
    issued = app.receipts.issue(
        contract_id,
        consecutive_periods(month, year, months),
        expenses=[parse_expense(e) for e in expense],
        number=number,
        payment_method=payment_method,
        payment_reference=reference,
        notes=notes,
    )
    print_receipt(issued)
    if pdf_path:
        _write_receipt_pdf(app, issued.id, Path(pdf_path))


@receipt.command("list")
@click.option("--contract", "contract_id", type=int, help="Only receipts of this contract")
@click.option("--year", "year", type=int, help="Only receipts issued in this year")
@pass_app
@reports_errors
def receipt_list(app: AppContext, contract_id: Optional[int], year: Optional[int]) -> None:
    """Receipt history, most recent first."""
    print_receipts(app.receipts.history(contract_id=contract_id, year=year))


@receipt.command("delete")
@click.argument("receipt_id", type=int)
@pass_app
@reports_errors
def receipt_delete(app: AppContext, receipt_id: int) -> None:
    """Delete a receipt and its lines."""
    app.receipts.delete(receipt_id)
    click.echo(f"Receipt {receipt_id} deleted")


@receipt.command("pdf")
@click.argument("receipt_id", type=int)
@click.argument("path")
@pass_app
@reports_errors
def receipt_pdf(app: AppContext, receipt_id: int, path: str) -> None:
    """Write the PDF of a receipt."""
    _write_receipt_pdf(app, receipt_id, Path(path))


def _write_receipt_pdf(app: AppContext, receipt_id: int, path: Path) -> None:
    from .pdf import render_receipt_pdf

    found = app.receipts.get(receipt_id)
    path.write_bytes(render_receipt_pdf(found, app.ledger.contract(found.contract_id), app.settings.agency))
    click.echo(f"Receipt PDF written to {path}")


if __name__ == "__main__":
    cli()
