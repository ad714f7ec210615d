"""PDF rendering of receipts and annual certificates with reportlab.

The engine never formats documents itself; this module takes the computed
``Receipt`` or ``AnnualCertificate`` plus display details and returns the
PDF as bytes, leaving storage or download to the caller.
"""

from __future__ import annotations

from decimal import Decimal
from io import BytesIO
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .config import Agency
from .data_models import AnnualCertificate, Contract, Receipt
from .utils import month_label

GRID_STYLE = [
    ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
]

HEADER_ROW_STYLE = [
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1F2937")),
    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
]

LABEL_COLUMN_STYLE = [
    ("BACKGROUND", (0, 0), (0, -1), colors.whitesmoke),
    ("FONT", (0, 0), (0, -1), "Helvetica-Bold"),
]


def euros(value: Decimal) -> str:
    return f"{value:,.2f} €"


def _styles():
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="TitleStyle",
            fontSize=18,
            alignment=TA_CENTER,
            spaceAfter=12,
            textColor=colors.HexColor("#1F2937"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="SectionHeader",
            fontSize=12,
            spaceBefore=14,
            spaceAfter=6,
            textColor=colors.HexColor("#111827"),
            fontName="Helvetica-Bold",
        )
    )
    styles.add(
        ParagraphStyle(
            name="Meta",
            fontSize=9,
            alignment=TA_RIGHT,
            textColor=colors.grey,
        )
    )
    return styles


def _text(value: Optional[str]) -> str:
    return escape(value or "-")


def _cell(value: Optional[str]) -> str:
    return value or "-"


def _agency_block(agency: Agency, styles) -> List:
    return [
        Paragraph(f"<b>{_text(agency.name)}</b>", styles["Normal"]),
        Paragraph(f"{_text(agency.address)} · Tax ID {_text(agency.tax_id)}", styles["Normal"]),
        Paragraph(f"{_text(agency.phone)} · {_text(agency.email)}", styles["Normal"]),
    ]


def _build(elements: List) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=30,
        leftMargin=30,
        topMargin=30,
        bottomMargin=30,
    )
    doc.build(elements)
    return buffer.getvalue()


def render_receipt_pdf(receipt: Receipt, contract: Contract, agency: Agency) -> bytes:
    """Render a receipt with its month lines, expenses and totals."""
    styles = _styles()
    elements: List = []
    elements.extend(_agency_block(agency, styles))
    elements.append(Spacer(1, 12))
    elements.append(Paragraph("RENT RECEIPT", styles["TitleStyle"]))
    elements.append(Paragraph(f"Receipt number: <b>{_text(receipt.number)}</b>", styles["Meta"]))
    elements.append(Paragraph(f"Issue date: {receipt.issued_on.strftime('%d %B %Y')}", styles["Meta"]))

    owner = contract.owner
    tenant = contract.primary_tenant
    premises = contract.premises
    elements.append(Paragraph("Contract", styles["SectionHeader"]))
    info = Table(
        [
            ["Owner", _cell(owner.full_name if owner else None)],
            ["Owner tax ID", _cell(owner.tax_id if owner else None)],
            ["Property", _cell(premises.address if premises else None)],
            ["Tenant", _cell(tenant.full_name if tenant else None)],
            ["Monthly rent", euros(contract.monthly_rent)],
            ["Management fee", f"{owner.management_fee_percent}%" if owner else "-"],
        ],
        colWidths=[120, None],
    )
    info.setStyle(TableStyle(GRID_STYLE + LABEL_COLUMN_STYLE))
    elements.append(info)

    elements.append(Paragraph("Months", styles["SectionHeader"]))
    rows = [["Month", "Gross", "Fee", "VAT", "Net"]]
    for line in receipt.lines:
        label = month_label(line.month, line.year) + (" (late)" if line.is_late else "")
        rows.append([label, euros(line.gross), euros(line.fee), euros(line.vat), euros(line.net)])
    rows.append(["Total", euros(receipt.total_gross), euros(receipt.total_fee), euros(receipt.total_vat), euros(receipt.total_net)])
    months = Table(rows, colWidths=[150, None, None, None, None])
    months.setStyle(TableStyle(GRID_STYLE + HEADER_ROW_STYLE + [("FONT", (0, -1), (-1, -1), "Helvetica-Bold")]))
    elements.append(months)

    if receipt.expenses:
        elements.append(Paragraph("Additional expenses", styles["SectionHeader"]))
        rows = [["Concept", "Amount", "Deductible"]]
        for expense in receipt.expenses:
            concept = expense.concept + (f" ({expense.description})" if expense.description else "")
            rows.append([_cell(concept), euros(expense.amount), "Yes" if expense.deductible else "No"])
        expenses = Table(rows, colWidths=[250, None, None])
        expenses.setStyle(TableStyle(GRID_STYLE + HEADER_ROW_STYLE))
        elements.append(expenses)

    elements.append(Paragraph("Settlement", styles["SectionHeader"]))
    totals = Table(
        [
            ["Net to owner", euros(receipt.total_net)],
            ["Deductible expenses", euros(receipt.deductible_expenses)],
            ["Non-deductible expenses", euros(receipt.non_deductible_expenses)],
            ["Final amount to owner", euros(receipt.final_net)],
            ["Payment method", _cell(receipt.payment_method)],
            ["Payment reference", _cell(receipt.payment_reference)],
        ],
        colWidths=[150, None],
    )
    totals.setStyle(TableStyle(GRID_STYLE + LABEL_COLUMN_STYLE))
    elements.append(totals)

    if receipt.notes:
        elements.append(Spacer(1, 10))
        elements.append(Paragraph(f"Notes: {_text(receipt.notes)}", styles["Normal"]))
    return _build(elements)


def render_certificate_pdf(certificate: AnnualCertificate, agency: Agency) -> bytes:
    """Render the annual certificate: one table per property and a summary."""
    styles = _styles()
    owner = certificate.owner
    elements: List = []
    elements.extend(_agency_block(agency, styles))
    elements.append(Spacer(1, 12))
    elements.append(Paragraph(f"ANNUAL INCOME CERTIFICATE {certificate.year}", styles["TitleStyle"]))
    elements.append(Paragraph(f"Issue date: {certificate.issued_on.strftime('%d %B %Y')}", styles["Meta"]))

    header = Table(
        [
            ["Owner", _cell(owner.full_name)],
            ["Tax ID", _cell(owner.tax_id)],
            ["Management fee", f"{owner.management_fee_percent}%"],
            ["Properties", str(certificate.property_count)],
            ["Contracts", str(certificate.contract_count)],
        ],
        colWidths=[120, None],
    )
    header.setStyle(TableStyle(GRID_STYLE + LABEL_COLUMN_STYLE))
    elements.append(header)

    for prop in certificate.properties:
        elements.append(Paragraph(_text(prop.premises.address), styles["SectionHeader"]))
        rows = [["Month", "Gross", "Fee", "VAT", "Net"]]
        for row in prop.months:
            rows.append([row.label, euros(row.gross), euros(row.fee), euros(row.vat), euros(row.net)])
        rows.append(["Total", euros(prop.gross), euros(prop.fee), euros(prop.vat), euros(prop.net)])
        table = Table(rows, colWidths=[150, None, None, None, None])
        table.setStyle(TableStyle(GRID_STYLE + HEADER_ROW_STYLE + [("FONT", (0, -1), (-1, -1), "Helvetica-Bold")]))
        elements.append(table)

    elements.append(Paragraph("Summary", styles["SectionHeader"]))
    summary = Table(
        [
            ["Gross income", euros(certificate.gross)],
            ["Management fees", euros(certificate.fee)],
            ["VAT on fees", euros(certificate.vat)],
            ["Net income", euros(certificate.net)],
        ],
        colWidths=[150, None],
    )
    summary.setStyle(TableStyle(GRID_STYLE + LABEL_COLUMN_STYLE))
    elements.append(summary)
    return _build(elements)
