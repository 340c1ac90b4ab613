"""Platform reference data: taxes and invoice statuses."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from errors import Conflict, NotFound, ValidationError
from extensions import db
from models import (
    ALLOWED_TAX_RATES,
    DEFAULT_INVOICE_STATUSES,
    DEFAULT_TAXES,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Tax,
)
from services import money
from services.audit import log_action
from services.policy import Action, Actor, authorize_invoice_status, authorize_tax
from utils import is_numeric

logger = logging.getLogger(__name__)

RATE_ERROR = "Tax rate must be null (exempted), 0, 8, or 19"


# ---------------------------------------------------------------------------
# Taxes
# ---------------------------------------------------------------------------

def parse_rate(raw) -> Optional[Decimal]:
    """Validate a tax rate; ``None`` is the exempted rate."""
    if raw is None:
        return None
    if not is_numeric(raw):
        raise ValidationError(RATE_ERROR, field="rate")
    rate = money.to_decimal(raw)
    if rate not in ALLOWED_TAX_RATES:
        raise ValidationError(RATE_ERROR, field="rate")
    return rate


def find_tax_by_rate(rate: Optional[Decimal]) -> Optional[Tax]:
    if rate is None:
        return Tax.query.filter(Tax.rate.is_(None)).first()
    return Tax.query.filter(Tax.rate == rate).first()


def list_taxes(actor: Actor) -> list[Tax]:
    authorize_tax(actor, Action.READ)
    # Exempted (NULL) first, then ascending rate.
    return Tax.query.order_by(Tax.rate.is_(None).desc(), Tax.rate.asc()).all()


def get_tax(actor: Actor, tax_id: int, action: Action = Action.READ) -> Tax:
    authorize_tax(actor, action)
    tax = db.session.get(Tax, tax_id)
    if tax is None:
        raise NotFound("Tax not found")
    return tax


def _default_tax_name(rate: Optional[Decimal]) -> str:
    return "Exempted" if rate is None else f"{rate.normalize():f}%"


def create_tax(actor: Actor, data: dict) -> Tax:
    authorize_tax(actor, Action.WRITE)
    if "rate" not in data:
        raise ValidationError("Tax rate is required", field="rate")
    rate = parse_rate(data["rate"])
    if find_tax_by_rate(rate) is not None:
        raise Conflict("Tax with this rate already exists", field="rate")
    name = str(data.get("name") or "").strip() or _default_tax_name(rate)
    tax = Tax(rate=rate, name=name)
    db.session.add(tax)
    db.session.flush()
    log_action(actor, "create", "tax", tax.id, name)
    db.session.commit()
    logger.info("Tax %s (%s) created", tax.id, name)
    return tax


def update_tax(actor: Actor, tax_id: int, data: dict) -> Tax:
    tax = get_tax(actor, tax_id, Action.WRITE)
    if "rate" in data:
        rate = parse_rate(data["rate"])
        existing = find_tax_by_rate(rate)
        if existing is not None and existing.id != tax.id:
            raise Conflict("Tax with this rate already exists", field="rate")
        tax.rate = rate
    if "name" in data:
        name = str(data["name"] or "").strip()
        if not name:
            raise ValidationError("Tax name cannot be empty", field="name")
        tax.name = name
    log_action(actor, "update", "tax", tax.id, f"fields={sorted(data)}")
    db.session.commit()
    return tax


def delete_tax(actor: Actor, tax_id: int) -> None:
    tax = get_tax(actor, tax_id, Action.WRITE)
    if InvoiceItem.query.filter_by(tax_id=tax.id).first() is not None:
        raise Conflict("Cannot delete tax that is in use by invoice items")
    db.session.delete(tax)
    log_action(actor, "delete", "tax", tax_id, tax.name)
    db.session.commit()


# ---------------------------------------------------------------------------
# Invoice statuses
# ---------------------------------------------------------------------------

def find_status(code) -> Optional[InvoiceStatus]:
    if not isinstance(code, str) or not code.strip():
        return None
    return InvoiceStatus.query.filter_by(code=code.strip()).first()


def list_statuses(actor: Actor) -> list[InvoiceStatus]:
    authorize_invoice_status(actor, Action.READ)
    return InvoiceStatus.query.order_by(InvoiceStatus.id).all()


def get_status(actor: Actor, status_id: int, action: Action = Action.READ) -> InvoiceStatus:
    authorize_invoice_status(actor, action)
    status = db.session.get(InvoiceStatus, status_id)
    if status is None:
        raise NotFound("Invoice status not found")
    return status


def create_status(actor: Actor, data: dict) -> InvoiceStatus:
    authorize_invoice_status(actor, Action.WRITE)
    code = str(data.get("code") or "").strip()
    if not code:
        raise ValidationError("Status code is required", field="code")
    if find_status(code) is not None:
        raise Conflict("Invoice status with this code already exists", field="code")
    status = InvoiceStatus(code=code)
    db.session.add(status)
    db.session.flush()
    log_action(actor, "create", "invoice_status", status.id, code)
    db.session.commit()
    return status


def update_status(actor: Actor, status_id: int, data: dict) -> InvoiceStatus:
    status = get_status(actor, status_id, Action.WRITE)
    if "code" in data:
        code = str(data["code"] or "").strip()
        if not code:
            raise ValidationError("Status code cannot be empty", field="code")
        existing = find_status(code)
        if existing is not None and existing.id != status.id:
            raise Conflict("Invoice status with this code already exists", field="code")
        status.code = code
    log_action(actor, "update", "invoice_status", status.id, f"fields={sorted(data)}")
    db.session.commit()
    return status


def delete_status(actor: Actor, status_id: int) -> None:
    status = get_status(actor, status_id, Action.WRITE)
    if Invoice.query.filter_by(status_id=status.id).first() is not None:
        raise Conflict("Cannot delete invoice status that is in use by invoices")
    db.session.delete(status)
    log_action(actor, "delete", "invoice_status", status_id, status.code)
    db.session.commit()


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------

def seed_reference_data() -> None:
    """Insert the default taxes and invoice statuses that are missing."""
    added = 0
    for rate, name in DEFAULT_TAXES:
        if find_tax_by_rate(rate) is None:
            db.session.add(Tax(rate=rate, name=name))
            added += 1
    for code in DEFAULT_INVOICE_STATUSES:
        if find_status(code) is None:
            db.session.add(InvoiceStatus(code=code))
            added += 1
    if added:
        db.session.commit()
        logger.info("Seeded %d reference rows", added)
