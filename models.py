"""SQLAlchemy models, roles and reference-data constants.

References between entities are plain foreign-key columns.  There are no
ORM relationships or back-populated collections: related rows are loaded
explicitly by the services that need them.
"""

from __future__ import annotations

import enum
from decimal import Decimal

from extensions import db
from utils import utc_now

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class Role(str, enum.Enum):
    USER = "ROLE_USER"
    ADMIN = "ROLE_ADMIN"


VALID_ROLES = [role.value for role in Role]


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

# None means "exempted", which is recorded differently from a 0% rate.
ALLOWED_TAX_RATES = (None, Decimal("0"), Decimal("8"), Decimal("19"))

DEFAULT_TAXES = [
    (None, "Exempted"),
    (Decimal("0"), "0%"),
    (Decimal("8"), "8%"),
    (Decimal("19"), "19%"),
]

DEFAULT_INVOICE_STATUSES = ["draft", "sent", "paid", "overdue", "cancelled"]
DEFAULT_INVOICE_STATUS = "draft"


# ---------------------------------------------------------------------------
# Tenant & User
# ---------------------------------------------------------------------------

class Tenant(db.Model):
    """An isolated customer account.  ``is_admin`` marks the platform operator."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    has_paid = db.Column(db.Boolean, nullable=False, default=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    # Nullable only between tenant creation and its first business.
    issuer_business_id = db.Column(
        db.Integer,
        db.ForeignKey("business.id", use_alter=True, name="fk_tenant_issuer_business"),
        unique=True,
    )
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(180), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    roles = db.Column(db.JSON, nullable=False, default=lambda: [Role.USER.value])
    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    email_verification_token = db.Column(db.String(255), index=True)
    remember_me_token = db.Column(db.String(255), index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    @property
    def role_set(self) -> frozenset:
        """Stored role strings as ``Role`` members; ROLE_USER is implied."""
        roles = {Role.USER}
        for value in self.roles or []:
            try:
                roles.add(Role(value))
            except ValueError:
                continue
        return frozenset(roles)


# ---------------------------------------------------------------------------
# Business & related
# ---------------------------------------------------------------------------

class Business(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    business_name = db.Column(db.String(255), nullable=False)
    trade_name = db.Column(db.String(255))
    business_type = db.Column(db.String(255))
    unique_identifier_number = db.Column(db.String(255))
    business_number = db.Column(db.String(255))
    fiscal_number = db.Column(db.String(255))
    vat_number = db.Column(db.String(255))
    number_of_employees = db.Column(db.Integer)
    registration_date = db.Column(db.Date)
    municipality = db.Column(db.String(255))
    address = db.Column(db.Text)
    phone = db.Column(db.String(255))
    email = db.Column(db.String(255))
    capital = db.Column(db.Numeric(10, 2, asdecimal=True))
    arbk_status = db.Column(db.String(255))
    logo = db.Column(db.String(255))
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


class BankAccount(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(
        db.Integer, db.ForeignKey("business.id", ondelete="CASCADE"), nullable=False, index=True
    )
    swift = db.Column(db.String(11))
    iban = db.Column(db.String(34))
    bank_account_number = db.Column(db.String(255), nullable=False)
    bank_name = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


class Article(db.Model):
    """Reusable catalog item of a business."""
    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(
        db.Integer, db.ForeignKey("business.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    unit_price = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    unit = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (db.Index("ix_article_name", "name"),)


# ---------------------------------------------------------------------------
# Global reference data
# ---------------------------------------------------------------------------

class Tax(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    rate = db.Column(db.Numeric(5, 2, asdecimal=True), unique=True)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


class InvoiceStatus(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

class Invoice(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    issuer_id = db.Column(db.Integer, db.ForeignKey("business.id"), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey("business.id"), nullable=False)
    invoice_number = db.Column(db.String(255), nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    status_id = db.Column(
        db.Integer, db.ForeignKey("invoice_status.id", ondelete="RESTRICT"), nullable=False
    )
    subtotal = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0.00"))
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.Index("ix_invoice_issuer_id", "issuer_id"),
        db.Index("ix_invoice_receiver_id", "receiver_id"),
        db.Index("ix_invoice_status_id", "status_id"),
        db.UniqueConstraint("issuer_id", "invoice_number", name="uq_invoice_number_per_issuer"),
    )


class InvoiceItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True
    )
    article_id = db.Column(db.Integer, db.ForeignKey("article.id", ondelete="SET NULL"))
    tax_id = db.Column(db.Integer, db.ForeignKey("tax.id", ondelete="SET NULL"))
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    unit_price = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    subtotal = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0.00"))
    tax_amount = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0.00"))
    # Dense and zero-based per invoice; kept that way by services/invoice.py.
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="SET NULL"), index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"))
    action = db.Column(db.String(80), nullable=False)
    entity_type = db.Column(db.String(80), nullable=False)
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.Index("ix_audit_log_created_at", "created_at"),
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )
