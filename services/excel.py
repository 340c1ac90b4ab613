"""Excel export of invoice lists (openpyxl)."""

from __future__ import annotations

import io
import logging

import openpyxl
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from errors import ExternalServiceFailure
from utils import format_date

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADERS = [
    "Invoice number",
    "Invoice date",
    "Due date",
    "Status",
    "Issuer",
    "Receiver",
    "Subtotal",
    "Total",
]

_CURRENCY_FORMAT = "#,##0.00"


def export_invoices(bundles, title: str = "Invoices") -> bytes:
    """Write one row per ``InvoiceBundle`` and return the .xlsx file."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title[:31]

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4F81BD", end_color="4F81BD", fill_type="solid")
    for col, header in enumerate(HEADERS, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill

    for row, bundle in enumerate(bundles, 2):
        invoice = bundle.invoice
        values = [
            invoice.invoice_number,
            format_date(invoice.invoice_date),
            format_date(invoice.due_date),
            bundle.status.code if bundle.status else "",
            bundle.issuer.business_name if bundle.issuer else "",
            bundle.receiver.business_name if bundle.receiver else "",
            invoice.subtotal,
            invoice.total,
        ]
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row, column=col, value=value)
            if col >= 7:
                cell.number_format = _CURRENCY_FORMAT

    for col in range(1, len(HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 20

    buffer = io.BytesIO()
    try:
        wb.save(buffer)
    except (OSError, ValueError) as exc:
        logger.error("Excel export failed: %s", exc)
        raise ExternalServiceFailure(f"Failed to generate Excel export: {exc}")
    return buffer.getvalue()
