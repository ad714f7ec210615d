"""Convert engine results into JSON-serialisable dictionaries.

Money values are written as floats rounded to cents, periods as ``YYYY-MM``
strings and dates in ISO format.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from .data_models import (
    AnnualCertificate,
    ArrearsSummary,
    CertificateMonth,
    Contract,
    MonthlySplit,
    Owner,
    Receipt,
    Settlement,
    SettlementOutcome,
)


def money(value: Decimal) -> float:
    return float(round(value, 2))


def split_to_dict(split: MonthlySplit) -> Dict[str, Any]:
    return {"gross": money(split.gross), "fee": money(split.fee), "vat": money(split.vat), "net": money(split.net)}


def owner_to_dict(owner: Owner) -> Dict[str, Any]:
    return {
        "id": owner.id,
        "full_name": owner.full_name,
        "tax_id": owner.tax_id,
        "management_fee_percent": float(owner.management_fee_percent),
        "is_company": owner.is_company,
    }


def contract_to_dict(contract: Contract) -> Dict[str, Any]:
    tenant = contract.primary_tenant
    return {
        "id": contract.id,
        "property_id": contract.property_id,
        "address": contract.premises.address if contract.premises else None,
        "owner": owner_to_dict(contract.owner) if contract.owner else None,
        "tenants": [
            {"id": link.tenant.id, "full_name": link.tenant.full_name, "is_primary": link.is_primary}
            for link in contract.tenants
        ],
        "primary_tenant": tenant.full_name if tenant else None,
        "monthly_rent": money(contract.monthly_rent),
        "start_date": contract.start_date.isoformat(),
        "end_date": contract.end_date.isoformat() if contract.end_date else None,
        "active": contract.active,
        "deactivated_on": contract.deactivated_on.isoformat() if contract.deactivated_on else None,
    }


def settlement_to_dict(settlement: Settlement) -> Dict[str, Any]:
    return {
        "contract_id": settlement.contract_id,
        "month": settlement.month,
        "year": settlement.year,
        "period": settlement.period,
        "amount": money(settlement.amount),
        "settled_at": settlement.settled_at.isoformat(),
        "notes": settlement.notes,
    }


def outcome_to_dict(outcome: SettlementOutcome) -> Dict[str, Any]:
    data: Dict[str, Any] = {"period": outcome.period, "month": outcome.month, "year": outcome.year, "ok": outcome.ok}
    if outcome.ok:
        data["settlement"] = settlement_to_dict(outcome.settlement)
    else:
        data["error"] = outcome.error
    return data


def arrears_to_dict(summary: ArrearsSummary) -> Dict[str, Any]:
    return {
        "contract_id": summary.contract_id,
        "as_of": summary.as_of.isoformat(),
        "total_owed": money(summary.total_owed),
        "months_pending": summary.months_pending,
        "first_pending_month": summary.first_pending_month,
        "months_late": summary.months_late,
        "detail": [
            {
                "month": m.month,
                "year": m.year,
                "label": m.label,
                "amount_owed": money(m.amount_owed),
                "months_late": m.months_late,
            }
            for m in summary.detail
        ],
    }


def receipt_to_dict(receipt: Receipt) -> Dict[str, Any]:
    return {
        "id": receipt.id,
        "number": receipt.number,
        "contract_id": receipt.contract_id,
        "issued_on": receipt.issued_on.isoformat(),
        "lines": [
            {
                "month": line.month,
                "year": line.year,
                "gross": money(line.gross),
                "fee": money(line.fee),
                "vat": money(line.vat),
                "net": money(line.net),
                "is_late": line.is_late,
            }
            for line in receipt.lines
        ],
        "expenses": [
            {
                "concept": e.concept,
                "amount": money(e.amount),
                "deductible": e.deductible,
                "description": e.description,
            }
            for e in receipt.expenses
        ],
        "totals": {
            "gross": money(receipt.total_gross),
            "fee": money(receipt.total_fee),
            "vat": money(receipt.total_vat),
            "net": money(receipt.total_net),
            "deductible_expenses": money(receipt.deductible_expenses),
            "non_deductible_expenses": money(receipt.non_deductible_expenses),
            "total_expenses": money(receipt.total_expenses),
            "final_net": money(receipt.final_net),
        },
        "late_months": receipt.late_months,
        "payment_method": receipt.payment_method,
        "payment_reference": receipt.payment_reference,
        "notes": receipt.notes,
    }


def _month_row(row: CertificateMonth) -> Dict[str, Any]:
    return {
        "month": row.month,
        "label": row.label,
        "gross": money(row.gross),
        "fee": money(row.fee),
        "vat": money(row.vat),
        "net": money(row.net),
    }


def certificate_to_dict(certificate: AnnualCertificate, basis: Optional[str] = None) -> Dict[str, Any]:
    data = {
        "owner": owner_to_dict(certificate.owner),
        "year": certificate.year,
        "issued_on": certificate.issued_on.isoformat(),
        "properties": [
            {
                "property_id": prop.premises.id,
                "address": prop.premises.address,
                "contracts": prop.contract_count,
                "months": [_month_row(row) for row in prop.months],
                "totals": {"gross": money(prop.gross), "fee": money(prop.fee), "vat": money(prop.vat), "net": money(prop.net)},
            }
            for prop in certificate.properties
        ],
        "months": [_month_row(row) for row in certificate.months],
        "totals": {
            "gross": money(certificate.gross),
            "fee": money(certificate.fee),
            "vat": money(certificate.vat),
            "net": money(certificate.net),
            "properties": certificate.property_count,
            "contracts": certificate.contract_count,
        },
    }
    if basis:
        data["basis"] = basis
    return data
