"""Businesses of a tenant, including logo storage."""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

from werkzeug.utils import secure_filename

from errors import Conflict, NotFound, ValidationError
from extensions import db
from models import Article, BankAccount, Business, Invoice, Tenant
from services import money
from services.audit import log_action
from services.policy import Action, Actor, authorize_business, authorize_tenant, ensure_active
from utils import is_numeric, parse_date, safe_int

logger = logging.getLogger(__name__)

LOGO_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "svg", "webp"}
LOGO_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/svg+xml", "image/webp"}
LOGO_MAX_BYTES = 5 * 1024 * 1024
LOGO_SUBDIR = "logos"

_TEXT_FIELDS = (
    "trade_name",
    "business_type",
    "unique_identifier_number",
    "business_number",
    "fiscal_number",
    "vat_number",
    "municipality",
    "address",
    "phone",
    "email",
    "arbk_status",
)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _apply_fields(business: Business, data: dict) -> None:
    if "business_name" in data:
        name = _clean(data["business_name"])
        if not name:
            raise ValidationError("Business name is required", field="business_name")
        business.business_name = name
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(business, field, _clean(data[field]))
    if "number_of_employees" in data:
        business.number_of_employees = safe_int(data["number_of_employees"]) or None
    if "registration_date" in data:
        raw = data["registration_date"]
        parsed = parse_date(raw)
        if raw and parsed is None:
            raise ValidationError(
                "Invalid registration date format", field="registration_date"
            )
        business.registration_date = parsed
    if "capital" in data:
        raw = data["capital"]
        if raw in (None, ""):
            business.capital = None
        elif not is_numeric(raw):
            raise ValidationError("Capital must be a number", field="capital")
        else:
            business.capital = money.bounded(raw, "capital")


# ---------------------------------------------------------------------------
# Logo files
# ---------------------------------------------------------------------------

def _logo_size(file_storage) -> int:
    stream = file_storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def store_logo(upload_dir: str, business_id: int, file_storage) -> str:
    """Save an uploaded logo and return its path relative to *upload_dir*."""
    filename = secure_filename(file_storage.filename or "")
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if (
        extension not in LOGO_EXTENSIONS
        or file_storage.mimetype not in LOGO_MIME_TYPES
        or _logo_size(file_storage) > LOGO_MAX_BYTES
    ):
        raise ValidationError(
            "Invalid logo file. Only image files (jpg, png, gif, svg, webp) "
            "up to 5MB are allowed.",
            field="logo",
        )
    target_dir = os.path.join(upload_dir, LOGO_SUBDIR)
    os.makedirs(target_dir, exist_ok=True)
    name = f"business-{business_id}-{int(time.time())}.{extension}"
    file_storage.save(os.path.join(target_dir, name))
    logger.info("Stored logo %s for business %s", name, business_id)
    return f"{LOGO_SUBDIR}/{name}"


def delete_logo(upload_dir: str, logo_path: Optional[str]) -> None:
    if not logo_path:
        return
    full_path = os.path.join(upload_dir, LOGO_SUBDIR, os.path.basename(logo_path))
    if os.path.isfile(full_path):
        os.remove(full_path)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_businesses(actor: Actor) -> list[Business]:
    ensure_active(actor)
    query = Business.query
    if not actor.tenant_is_admin:
        query = query.filter_by(tenant_id=actor.tenant_id)
    return query.order_by(Business.created_at.desc(), Business.id.desc()).all()


def get_business(actor: Actor, business_id: int, action: Action = Action.READ) -> Business:
    ensure_active(actor)
    business = db.session.get(Business, business_id)
    if business is None:
        raise NotFound("Business not found")
    authorize_business(actor, business, action)
    return business


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def create_business(actor: Actor, data: dict, logo=None, upload_dir: str = "uploads") -> Business:
    """Create a business; the first one of a tenant becomes its issuer."""
    ensure_active(actor)
    tenant_id = safe_int(data.get("tenant_id")) or actor.tenant_id
    authorize_tenant(actor, tenant_id, Action.WRITE)
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise ValidationError("Tenant not found", field="tenant_id")
    if not _clean(data.get("business_name")):
        raise ValidationError("Business name is required", field="business_name")

    business = Business(created_by_id=actor.user_id, tenant_id=tenant.id)
    _apply_fields(business, data)
    db.session.add(business)
    db.session.flush()
    if logo is not None:
        business.logo = store_logo(upload_dir, business.id, logo)
    log_action(actor, "create", "business", business.id, business.business_name)
    db.session.commit()

    if tenant.issuer_business_id is None:
        tenant.issuer_business_id = business.id
        db.session.commit()
        logger.info("Business %s became issuer of tenant %s", business.id, tenant.id)
    logger.info("Business %s created by user %s", business.id, actor.user_id)
    return business


def update_business(
    actor: Actor, business_id: int, data: dict, logo=None, upload_dir: str = "uploads"
) -> Business:
    business = get_business(actor, business_id, Action.WRITE)
    _apply_fields(business, data)
    if logo is not None:
        old_logo = business.logo
        business.logo = store_logo(upload_dir, business.id, logo)
        delete_logo(upload_dir, old_logo)
    log_action(actor, "update", "business", business.id, f"fields={sorted(data)}")
    db.session.commit()
    return business


def delete_business(actor: Actor, business_id: int, upload_dir: str = "uploads") -> None:
    business = get_business(actor, business_id, Action.WRITE)
    if Tenant.query.filter_by(issuer_business_id=business.id).first() is not None:
        raise Conflict(
            "Cannot delete issuer business. This business is used for invoice creation."
        )
    in_use = Invoice.query.filter(
        (Invoice.issuer_id == business.id) | (Invoice.receiver_id == business.id)
    ).first()
    if in_use is not None:
        raise Conflict("Cannot delete a business that has invoices")

    logo = business.logo
    Article.query.filter_by(business_id=business.id).delete(synchronize_session=False)
    BankAccount.query.filter_by(business_id=business.id).delete(synchronize_session=False)
    db.session.delete(business)
    log_action(actor, "delete", "business", business_id, business.business_name)
    db.session.commit()
    delete_logo(upload_dir, logo)
    logger.info("Business %s deleted by user %s", business_id, actor.user_id)
