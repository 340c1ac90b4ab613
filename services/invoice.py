"""Invoice business logic.

Invoices and their items are plain rows linked by foreign keys.  Anything
that needs an invoice together with its lines and referenced records uses
``load_invoice_with_items`` / ``load_invoices_with_items``, which fetch
everything in a fixed number of queries.

Every change to an invoice's lines ends with ``_refresh_totals`` so the
invoice subtotal and total always equal the sums over its items.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from errors import Conflict, NotFound, ValidationError
from extensions import db
from models import (
    DEFAULT_INVOICE_STATUS,
    Article,
    Business,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Tax,
    Tenant,
)
from services import calculator, numbering
from services.audit import log_action
from services.business import get_business
from services.policy import (
    Action,
    Actor,
    authorize_all_invoices,
    authorize_business,
    authorize_invoice_write,
    authorize_issuer_change,
    authorize_tenant,
    ensure_active,
    not_found_message,
    resolve_issuer_id,
)
from services.reference import find_status, find_tax_by_rate, parse_rate
from utils import is_numeric, parse_date, safe_int

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

@dataclass
class InvoiceBundle:
    """An invoice with its ordered items and every record they reference."""

    invoice: Invoice
    items: list = field(default_factory=list)
    issuer: Optional[Business] = None
    receiver: Optional[Business] = None
    status: Optional[InvoiceStatus] = None
    taxes: dict = field(default_factory=dict)
    articles: dict = field(default_factory=dict)


def items_of(invoice_id: int) -> list[InvoiceItem]:
    return (
        InvoiceItem.query.filter_by(invoice_id=invoice_id)
        .order_by(InvoiceItem.sort_order, InvoiceItem.id)
        .all()
    )


def _by_id(model, ids) -> dict:
    ids = {i for i in ids if i is not None}
    if not ids:
        return {}
    return {row.id: row for row in model.query.filter(model.id.in_(ids)).all()}


def load_invoices_with_items(invoices: list[Invoice]) -> list[InvoiceBundle]:
    if not invoices:
        return []
    invoice_ids = [inv.id for inv in invoices]
    items_by_invoice: dict[int, list] = {inv_id: [] for inv_id in invoice_ids}
    all_items = (
        InvoiceItem.query.filter(InvoiceItem.invoice_id.in_(invoice_ids))
        .order_by(InvoiceItem.invoice_id, InvoiceItem.sort_order, InvoiceItem.id)
        .all()
    )
    for item in all_items:
        items_by_invoice[item.invoice_id].append(item)

    businesses = _by_id(
        Business, [inv.issuer_id for inv in invoices] + [inv.receiver_id for inv in invoices]
    )
    statuses = _by_id(InvoiceStatus, [inv.status_id for inv in invoices])
    taxes = _by_id(Tax, [item.tax_id for item in all_items])
    articles = _by_id(Article, [item.article_id for item in all_items])

    return [
        InvoiceBundle(
            invoice=inv,
            items=items_by_invoice[inv.id],
            issuer=businesses.get(inv.issuer_id),
            receiver=businesses.get(inv.receiver_id),
            status=statuses.get(inv.status_id),
            taxes=taxes,
            articles=articles,
        )
        for inv in invoices
    ]


def load_invoice_with_items(invoice: Invoice) -> InvoiceBundle:
    return load_invoices_with_items([invoice])[0]


def _refresh_totals(invoice: Invoice) -> None:
    db.session.flush()
    calculator.recalculate_invoice(invoice, items_of(invoice.id))


# ---------------------------------------------------------------------------
# Line input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineInput:
    """Validated line data, independent of any session state."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    article_id: Optional[int]
    tax_id: Optional[int]


def _resolve_article(raw, issuer_id: int) -> Optional[int]:
    if raw is None or raw == "":
        return None
    if not is_numeric(raw):
        raise ValidationError("Article ID must be a number", field="article_id")
    article = db.session.get(Article, safe_int(raw))
    if article is None:
        raise ValidationError("Article not found", field="article_id")
    if article.business_id != issuer_id:
        raise ValidationError(
            "Article must belong to the invoice issuer business", field="article_id"
        )
    return article.id


def _resolve_tax(data: dict) -> Optional[int]:
    """Tax by ``tax_id``, else by ``tax_rate`` (null picks the exempted tax)."""
    raw_id = data.get("tax_id")
    if raw_id is not None and raw_id != "":
        if not is_numeric(raw_id):
            raise ValidationError("Tax ID must be a number", field="tax_id")
        tax = db.session.get(Tax, safe_int(raw_id))
        if tax is None:
            raise ValidationError("Tax not found", field="tax_id")
        return tax.id
    if "tax_rate" in data:
        rate = parse_rate(data["tax_rate"])
        tax = find_tax_by_rate(rate)
        if tax is None:
            raise ValidationError("No tax defined for this rate", field="tax_rate")
        return tax.id
    return None


def parse_line(data, issuer_id: int) -> LineInput:
    if not isinstance(data, dict):
        raise ValidationError("Each item must be an object", field="items")
    description, quantity, unit_price = calculator.validate_line(
        data.get("description"), data.get("quantity"), data.get("unit_price")
    )
    return LineInput(
        description=description,
        quantity=quantity,
        unit_price=unit_price,
        article_id=_resolve_article(data.get("article_id"), issuer_id),
        tax_id=_resolve_tax(data),
    )


def _rate_of(tax_id: Optional[int]) -> Optional[Decimal]:
    if tax_id is None:
        return None
    tax = db.session.get(Tax, tax_id)
    return tax.rate if tax else None


def _build_item(invoice_id: int, line: LineInput, sort_order: int) -> InvoiceItem:
    item = InvoiceItem(
        invoice_id=invoice_id,
        description=line.description,
        quantity=line.quantity,
        unit_price=line.unit_price,
        article_id=line.article_id,
        tax_id=line.tax_id,
        sort_order=sort_order,
    )
    calculator.apply_line_totals(item, _rate_of(line.tax_id))
    db.session.add(item)
    return item


def _parse_lines(raw_items, issuer_id: int) -> Optional[list[LineInput]]:
    if raw_items is None:
        return None
    if not isinstance(raw_items, list):
        raise ValidationError("Items must be a list", field="items")
    return [parse_line(data, issuer_id) for data in raw_items]


def _required_date(data: dict, key: str, label: str) -> datetime.date:
    if not data.get(key):
        raise ValidationError(f"{label} is required", field=key)
    parsed = parse_date(data[key])
    if parsed is None:
        raise ValidationError(f"Invalid {label.lower()} format", field=key)
    return parsed


def _status_id(code) -> int:
    status = find_status(code)
    if status is None:
        raise ValidationError(f"Invalid invoice status: {code}", field="status")
    return status.id


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def _find_invoice(actor: Actor, business: Business, invoice_id: int) -> Invoice:
    """Admin tenants reach any invoice by id; others only the business's own."""
    if actor.tenant_is_admin:
        invoice = db.session.get(Invoice, invoice_id)
    else:
        invoice = Invoice.query.filter_by(id=invoice_id, issuer_id=business.id).first()
    if invoice is None:
        logger.warning(
            "Invoice %s not found for user %s via business %s",
            invoice_id, actor.user_id, business.id,
        )
        raise NotFound(not_found_message(actor, "Invoice"))
    return invoice


def _tenant_of(actor: Actor) -> Optional[Tenant]:
    return db.session.get(Tenant, actor.tenant_id)


def _issuer_tenant_id(invoice: Invoice) -> Optional[int]:
    issuer = db.session.get(Business, invoice.issuer_id)
    return issuer.tenant_id if issuer else None


def list_invoices(actor: Actor, business_id: int, status: Optional[str] = None) -> list[Invoice]:
    business = get_business(actor, business_id)
    query = Invoice.query.filter_by(issuer_id=business.id)
    if status:
        status_row = find_status(status)
        if status_row is None:
            return []
        query = query.filter_by(status_id=status_row.id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def list_all_invoices(
    actor: Actor, business_id: Optional[int] = None, status: Optional[str] = None
) -> list[Invoice]:
    authorize_all_invoices(actor)
    query = Invoice.query
    if business_id:
        query = query.filter_by(issuer_id=business_id)
    if status:
        status_row = find_status(status)
        if status_row is None:
            return []
        query = query.filter_by(status_id=status_row.id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def get_invoice(actor: Actor, business_id: int, invoice_id: int) -> InvoiceBundle:
    business = get_business(actor, business_id)
    return load_invoice_with_items(_find_invoice(actor, business, invoice_id))


# ---------------------------------------------------------------------------
# Invoice mutations
# ---------------------------------------------------------------------------

def create_invoice(actor: Actor, business_id: int, data: dict) -> InvoiceBundle:
    """Create an invoice with its items under a newly allocated number."""
    business = get_business(actor, business_id)
    issuer_id = resolve_issuer_id(actor, _tenant_of(actor), business)

    receiver_raw = data.get("receiver_id")
    if not is_numeric(receiver_raw):
        raise ValidationError("Receiver business ID is required", field="receiver_id")
    receiver = db.session.get(Business, safe_int(receiver_raw))
    if receiver is None:
        raise NotFound("Receiver business not found")
    receiver_id = receiver.id

    invoice_date = _required_date(data, "invoice_date", "Invoice date")
    due_date = _required_date(data, "due_date", "Due date")
    status_id = _status_id(data.get("status") or DEFAULT_INVOICE_STATUS)
    lines = _parse_lines(data.get("items"), issuer_id) or []

    def persist(number: str) -> Invoice:
        invoice = Invoice(
            issuer_id=issuer_id,
            receiver_id=receiver_id,
            invoice_number=number,
            invoice_date=invoice_date,
            due_date=due_date,
            status_id=status_id,
        )
        db.session.add(invoice)
        db.session.flush()
        for index, line in enumerate(lines):
            _build_item(invoice.id, line, index)
        _refresh_totals(invoice)
        log_action(actor, "create", "invoice", invoice.id, number)
        db.session.flush()
        return invoice

    invoice = numbering.allocate(
        issuer_id,
        persist,
        current_app.config["APP_CONFIG"].invoice_number_max_attempts,
    )
    logger.info(
        "Invoice %s (%s) created by user %s", invoice.id, invoice.invoice_number, actor.user_id
    )
    return load_invoice_with_items(invoice)


def _unlink_foreign_articles(invoice: Invoice) -> None:
    """Clear article links that do not belong to the invoice's issuer."""
    own = {
        article_id
        for (article_id,) in db.session.query(Article.id).filter_by(
            business_id=invoice.issuer_id
        )
    }
    for item in items_of(invoice.id):
        if item.article_id is not None and item.article_id not in own:
            item.article_id = None


def update_invoice(actor: Actor, business_id: int, invoice_id: int, data: dict) -> InvoiceBundle:
    business = get_business(actor, business_id)
    invoice = _find_invoice(actor, business, invoice_id)
    authorize_invoice_write(actor, _tenant_of(actor), invoice, _issuer_tenant_id(invoice))

    previous_issuer_id = invoice.issuer_id
    raw_issuer = data.get("issuer_id")
    if is_numeric(raw_issuer) and safe_int(raw_issuer) != invoice.issuer_id:
        new_issuer = db.session.get(Business, safe_int(raw_issuer))
        authorize_issuer_change(actor, new_issuer.tenant_id if new_issuer else None)
        if new_issuer is None:
            raise NotFound("Issuer business not found")
        invoice.issuer_id = new_issuer.id

    if is_numeric(data.get("receiver_id")):
        receiver = db.session.get(Business, safe_int(data["receiver_id"]))
        if receiver is None:
            raise NotFound("Receiver business not found")
        invoice.receiver_id = receiver.id
    if data.get("invoice_date"):
        invoice.invoice_date = _required_date(data, "invoice_date", "Invoice date")
    if data.get("due_date"):
        invoice.due_date = _required_date(data, "due_date", "Due date")
    if data.get("status"):
        invoice.status_id = _status_id(data["status"])

    lines = _parse_lines(data.get("items"), invoice.issuer_id)
    if lines is not None:
        for item in items_of(invoice.id):
            db.session.delete(item)
        db.session.flush()
        for index, line in enumerate(lines):
            _build_item(invoice.id, line, index)
    elif invoice.issuer_id != previous_issuer_id:
        _unlink_foreign_articles(invoice)
    _refresh_totals(invoice)

    log_action(actor, "update", "invoice", invoice.id, f"fields={sorted(data)}")
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Invoice number already exists for this issuer")
    return load_invoice_with_items(invoice)


def delete_invoice(actor: Actor, business_id: int, invoice_id: int) -> None:
    business = get_business(actor, business_id)
    invoice = _find_invoice(actor, business, invoice_id)
    authorize_tenant(actor, _issuer_tenant_id(invoice), Action.WRITE)
    InvoiceItem.query.filter_by(invoice_id=invoice.id).delete(synchronize_session=False)
    db.session.delete(invoice)
    log_action(actor, "delete", "invoice", invoice_id, invoice.invoice_number)
    db.session.commit()
    logger.info("Invoice %s deleted by user %s", invoice_id, actor.user_id)


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

def _invoice_for_items(actor: Actor, invoice_id: int, action: Action) -> Invoice:
    ensure_active(actor)
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("Invoice not found")
    issuer = db.session.get(Business, invoice.issuer_id)
    if action is Action.READ:
        authorize_business(actor, issuer)
    else:
        authorize_invoice_write(actor, _tenant_of(actor), invoice, issuer.tenant_id)
    return invoice


def _item_of(invoice: Invoice, item_id: int) -> InvoiceItem:
    item = InvoiceItem.query.filter_by(id=item_id, invoice_id=invoice.id).first()
    if item is None:
        raise NotFound("Invoice item not found")
    return item


def _renumber(items: list[InvoiceItem]) -> None:
    for index, item in enumerate(items):
        if item.sort_order != index:
            item.sort_order = index


def list_items(actor: Actor, invoice_id: int) -> InvoiceBundle:
    invoice = _invoice_for_items(actor, invoice_id, Action.READ)
    return load_invoice_with_items(invoice)


def get_item(actor: Actor, invoice_id: int, item_id: int) -> tuple[InvoiceItem, InvoiceBundle]:
    invoice = _invoice_for_items(actor, invoice_id, Action.READ)
    item = _item_of(invoice, item_id)
    return item, load_invoice_with_items(invoice)


def add_item(actor: Actor, invoice_id: int, data: dict) -> tuple[InvoiceItem, InvoiceBundle]:
    invoice = _invoice_for_items(actor, invoice_id, Action.WRITE)
    line = parse_line(data, invoice.issuer_id)
    item = _build_item(invoice.id, line, len(items_of(invoice.id)))
    _refresh_totals(invoice)
    log_action(actor, "create", "invoice_item", item.id, f"invoice={invoice.id}")
    db.session.commit()
    return item, load_invoice_with_items(invoice)


def update_item(
    actor: Actor, invoice_id: int, item_id: int, data: dict
) -> tuple[InvoiceItem, InvoiceBundle]:
    invoice = _invoice_for_items(actor, invoice_id, Action.WRITE)
    item = _item_of(invoice, item_id)

    description, quantity, unit_price = calculator.validate_line(
        data.get("description", item.description),
        data.get("quantity", item.quantity),
        data.get("unit_price", item.unit_price),
    )
    item.description = description
    item.quantity = quantity
    item.unit_price = unit_price
    if "article_id" in data:
        item.article_id = _resolve_article(data["article_id"], invoice.issuer_id)
    if "tax_id" in data or "tax_rate" in data:
        item.tax_id = _resolve_tax(data)
    calculator.apply_line_totals(item, _rate_of(item.tax_id))

    if "sort_order" in data and is_numeric(data["sort_order"]):
        siblings = [i for i in items_of(invoice.id) if i.id != item.id]
        position = min(max(safe_int(data["sort_order"]), 0), len(siblings))
        siblings.insert(position, item)
        _renumber(siblings)

    _refresh_totals(invoice)
    log_action(actor, "update", "invoice_item", item.id, f"fields={sorted(data)}")
    db.session.commit()
    return item, load_invoice_with_items(invoice)


def delete_item(actor: Actor, invoice_id: int, item_id: int) -> InvoiceBundle:
    invoice = _invoice_for_items(actor, invoice_id, Action.WRITE)
    item = _item_of(invoice, item_id)
    db.session.delete(item)
    db.session.flush()
    _renumber(items_of(invoice.id))
    _refresh_totals(invoice)
    log_action(actor, "delete", "invoice_item", item_id, f"invoice={invoice.id}")
    db.session.commit()
    return load_invoice_with_items(invoice)


def reorder_items(actor: Actor, invoice_id: int, item_ids) -> InvoiceBundle:
    """Set each item's sort order to its position in *item_ids*.

    *item_ids* must name every item of the invoice exactly once.
    """
    invoice = _invoice_for_items(actor, invoice_id, Action.WRITE)
    if not isinstance(item_ids, list):
        raise ValidationError("item_ids array is required", field="item_ids")
    items = {item.id: item for item in items_of(invoice.id)}
    ordered = []
    for raw_id in item_ids:
        item = items.get(safe_int(raw_id, -1))
        if item is None:
            raise ValidationError(f"Invoice item with ID {raw_id} not found", field="item_ids")
        ordered.append(item)
    if len(ordered) != len(items) or len({i.id for i in ordered}) != len(items):
        raise ValidationError(
            "All invoice items must be included in the reorder", field="item_ids"
        )
    _renumber(ordered)
    log_action(actor, "reorder", "invoice", invoice.id, ",".join(str(i.id) for i in ordered))
    db.session.commit()
    return load_invoice_with_items(invoice)
