"""Line-item and invoice totals.

``calculate_line`` is the single place where a line's subtotal, tax amount
and total are derived.  ``recalculate_invoice`` sums the lines into the
invoice.  Both are idempotent.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import event

from errors import ValidationError
from extensions import db
from models import InvoiceItem, Tax
from services import money
from utils import is_numeric

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


def calculate_line(quantity, unit_price, rate: Optional[Decimal] = None) -> LineTotals:
    """Compute the totals of one line.

    ``rate`` is a percentage (``19`` for 19%).  ``None`` means the line has
    no tax or is exempted; both yield a zero tax amount.
    """
    subtotal = money.multiply(quantity, unit_price)
    if rate is None:
        tax_amount = money.ZERO
    else:
        tax_amount = money.multiply(subtotal, money.divide(rate, 100))
    return LineTotals(subtotal, tax_amount, money.add(subtotal, tax_amount))


def validate_line(description, quantity, unit_price) -> tuple[str, Decimal, Decimal]:
    """Check raw line input and return it normalised.

    Raises ``ValidationError`` naming the offending field.
    """
    description = (description or "").strip() if isinstance(description, str) else description
    if not description:
        raise ValidationError("Item description is required", field="description")
    if not is_numeric(quantity):
        raise ValidationError(
            "Item quantity is required and must be a number", field="quantity"
        )
    if not is_numeric(unit_price):
        raise ValidationError(
            "Item unit price is required and must be a number", field="unit_price"
        )
    quantity = money.bounded(quantity, "quantity")
    unit_price = money.bounded(unit_price, "unit_price")
    if quantity <= 0:
        raise ValidationError("Item quantity must be greater than zero", field="quantity")
    if unit_price < 0:
        raise ValidationError("Item unit price cannot be negative", field="unit_price")
    if money.multiply(quantity, unit_price) > money.MAX_AMOUNT:
        raise ValidationError("Item subtotal is too large", field="quantity")
    return description, quantity, unit_price


def apply_line_totals(item: InvoiceItem, rate: Optional[Decimal]) -> InvoiceItem:
    """Write freshly computed totals onto *item*."""
    totals = calculate_line(item.quantity, item.unit_price, rate)
    item.subtotal = totals.subtotal
    item.tax_amount = totals.tax_amount
    item.total = totals.total
    return item


def aggregate(items: Iterable[InvoiceItem]) -> tuple[Decimal, Decimal]:
    """Return ``(subtotal, total)`` summed over *items*."""
    subtotal = money.ZERO
    total = money.ZERO
    for item in items:
        subtotal = money.add(subtotal, item.subtotal or money.ZERO)
        total = money.add(total, item.total or money.ZERO)
    return subtotal, total


def recalculate_invoice(invoice, items: Iterable[InvoiceItem]):
    invoice.subtotal, invoice.total = aggregate(items)
    return invoice


def tax_breakdown(items: Iterable[InvoiceItem], taxes: dict) -> list[dict]:
    """Group line amounts by tax for the PDF summary.

    *taxes* maps tax id to ``Tax``.  Lines without a tax are grouped under
    ``None``.
    """
    groups: "OrderedDict[Optional[int], dict]" = OrderedDict()
    for item in items:
        tax = taxes.get(item.tax_id) if item.tax_id else None
        key = tax.id if tax else None
        if key not in groups:
            groups[key] = {
                "name": tax.name if tax else "No tax",
                "rate": tax.rate if tax else None,
                "subtotal": money.ZERO,
                "tax_amount": money.ZERO,
            }
        group = groups[key]
        group["subtotal"] = money.add(group["subtotal"], item.subtotal)
        group["tax_amount"] = money.add(group["tax_amount"], item.tax_amount)
    return list(groups.values())


# ---------------------------------------------------------------------------
# Flush-time recalculation
# ---------------------------------------------------------------------------

def _recalculate_items_on_flush(session, flush_context, instances):
    """Recompute totals of every new or modified ``InvoiceItem``.

    Services already call ``apply_line_totals``; this catches writes that
    bypass them.
    """
    with session.no_autoflush:
        for obj in list(session.new) + list(session.dirty):
            if not isinstance(obj, InvoiceItem):
                continue
            if obj.quantity is None or obj.unit_price is None:
                continue
            rate = None
            if obj.tax_id is not None:
                tax = session.get(Tax, obj.tax_id)
                rate = tax.rate if tax else None
            apply_line_totals(obj, rate)


def register_calculation_guards(app):
    """Register the before_flush listener.  Safe to call more than once."""
    if not event.contains(db.session, "before_flush", _recalculate_items_on_flush):
        event.listen(db.session, "before_flush", _recalculate_items_on_flush)
