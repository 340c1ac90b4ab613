"""Tenant lifecycle: bootstrap, listing, updates and deletion."""

from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from errors import AccessDenied, Conflict, NotFound, ValidationError
from extensions import db
from models import (
    Article,
    AuditLog,
    BankAccount,
    Business,
    Invoice,
    InvoiceItem,
    Tenant,
    User,
)
from services.audit import log_action
from services.policy import (
    Action,
    Actor,
    authorize_tenant,
    authorize_tenant_admin_flag,
    authorize_tenant_delete,
    ensure_active,
)
from utils import safe_int

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

def create_tenant(name: str, *, is_admin: bool = False, has_paid: bool = False) -> Tenant:
    """Create and commit a tenant that has no issuer business yet."""
    tenant = Tenant(name=name, is_admin=is_admin, has_paid=has_paid)
    db.session.add(tenant)
    db.session.commit()
    logger.info("Created tenant %s (%s)", tenant.id, name)
    return tenant


def attach_first_business(tenant: Tenant, user: User) -> Business:
    """Give a fresh tenant its first business and make it the issuer.

    The business is committed before the tenant points at it.
    """
    business = Business(
        business_name=tenant.name,
        created_by_id=user.id,
        tenant_id=tenant.id,
    )
    db.session.add(business)
    db.session.commit()

    tenant.issuer_business_id = business.id
    db.session.commit()
    logger.info("Business %s set as issuer of tenant %s", business.id, tenant.id)
    return business


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_tenants(actor: Actor) -> list[Tenant]:
    ensure_active(actor)
    if actor.tenant_is_admin:
        return Tenant.query.order_by(Tenant.created_at.desc(), Tenant.id.desc()).all()
    tenant = db.session.get(Tenant, actor.tenant_id)
    return [tenant] if tenant else []


def get_tenant(actor: Actor, tenant_id: int, action: Action = Action.READ) -> Tenant:
    ensure_active(actor)
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    authorize_tenant(actor, tenant.id, action, "You do not have access to this tenant")
    return tenant


def issuer_business(tenant: Tenant):
    if tenant is None or tenant.issuer_business_id is None:
        return None
    return db.session.get(Business, tenant.issuer_business_id)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def update_tenant(actor: Actor, tenant_id: int, data: dict) -> Tenant:
    tenant = get_tenant(actor, tenant_id, Action.WRITE)

    if (
        "issuer_business_id" in data
        and safe_int(data["issuer_business_id"], None) != tenant.issuer_business_id
    ):
        raise ValidationError(
            "Issuer business cannot be changed after creation", field="issuer_business_id"
        )
    if "is_admin" in data:
        authorize_tenant_admin_flag(actor)
        tenant.is_admin = bool(data["is_admin"])
    if "name" in data:
        name = (data["name"] or "").strip() if isinstance(data["name"], str) else ""
        if not name:
            raise ValidationError("Tenant name is required", field="name")
        tenant.name = name
    if "has_paid" in data:
        tenant.has_paid = bool(data["has_paid"])

    log_action(actor, "update", "tenant", tenant.id, f"fields={sorted(data)}")
    db.session.commit()
    logger.info("Tenant %s updated by user %s", tenant.id, actor.user_id)
    return tenant


def delete_tenant(actor: Actor, tenant_id: int) -> None:
    """Delete a tenant with its users, businesses and their invoices.

    Refused while another tenant's invoices are addressed to one of its
    businesses.
    """
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    authorize_tenant_delete(actor, tenant.id)
    if tenant.id == actor.tenant_id:
        raise AccessDenied("You cannot delete your own tenant")

    business_ids = [
        row.id for row in db.session.query(Business.id).filter_by(tenant_id=tenant.id)
    ]
    if business_ids:
        foreign = (
            Invoice.query.filter(Invoice.receiver_id.in_(business_ids))
            .filter(~Invoice.issuer_id.in_(business_ids))
            .first()
        )
        if foreign is not None:
            raise Conflict(
                "Cannot delete tenant: its businesses receive invoices from other tenants"
            )
        invoice_ids = [
            row.id
            for row in db.session.query(Invoice.id).filter(
                or_(Invoice.issuer_id.in_(business_ids), Invoice.receiver_id.in_(business_ids))
            )
        ]
        if invoice_ids:
            InvoiceItem.query.filter(InvoiceItem.invoice_id.in_(invoice_ids)).delete(
                synchronize_session=False
            )
            Invoice.query.filter(Invoice.id.in_(invoice_ids)).delete(synchronize_session=False)
        Article.query.filter(Article.business_id.in_(business_ids)).delete(
            synchronize_session=False
        )
        BankAccount.query.filter(BankAccount.business_id.in_(business_ids)).delete(
            synchronize_session=False
        )

    tenant.issuer_business_id = None
    db.session.flush()
    if business_ids:
        Business.query.filter(Business.id.in_(business_ids)).delete(synchronize_session=False)
    user_ids = [row.id for row in db.session.query(User.id).filter_by(tenant_id=tenant.id)]
    if user_ids:
        AuditLog.query.filter(AuditLog.user_id.in_(user_ids)).update(
            {AuditLog.user_id: None}, synchronize_session=False
        )
        User.query.filter(User.id.in_(user_ids)).delete(synchronize_session=False)
    AuditLog.query.filter_by(tenant_id=tenant.id).update(
        {AuditLog.tenant_id: None}, synchronize_session=False
    )
    db.session.delete(tenant)
    log_action(actor, "delete", "tenant", tenant_id, tenant.name)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Tenant %s still referenced, delete rolled back", tenant_id)
        raise Conflict("Cannot delete tenant: its data is still referenced")
    logger.info("Tenant %s deleted by user %s", tenant_id, actor.user_id)
