"""JSON views of the models.  Money and rates are rendered as decimal strings."""

from __future__ import annotations

import os
from typing import Optional

from services.money import format_money
from utils import format_date, format_datetime


def _rate(value) -> Optional[str]:
    return None if value is None else format_money(value)


def logo_url(business, host_url: str = "") -> Optional[str]:
    if not business.logo:
        return None
    return f"{host_url.rstrip('/')}/uploads/logos/{os.path.basename(business.logo)}"


def tenant_to_dict(tenant) -> Optional[dict]:
    if tenant is None:
        return None
    return {
        "id": tenant.id,
        "name": tenant.name,
        "has_paid": tenant.has_paid,
        "is_admin": tenant.is_admin,
        "issuer_business_id": tenant.issuer_business_id,
        "created_at": format_datetime(tenant.created_at),
        "updated_at": format_datetime(tenant.updated_at),
    }


def business_to_dict(business, host_url: str = "") -> Optional[dict]:
    if business is None:
        return None
    return {
        "id": business.id,
        "business_name": business.business_name,
        "trade_name": business.trade_name,
        "business_type": business.business_type,
        "unique_identifier_number": business.unique_identifier_number,
        "business_number": business.business_number,
        "fiscal_number": business.fiscal_number,
        "vat_number": business.vat_number,
        "number_of_employees": business.number_of_employees,
        "registration_date": format_date(business.registration_date),
        "municipality": business.municipality,
        "address": business.address,
        "phone": business.phone,
        "email": business.email,
        "capital": None if business.capital is None else format_money(business.capital),
        "arbk_status": business.arbk_status,
        "logo": logo_url(business, host_url),
        "tenant_id": business.tenant_id,
        "created_by_id": business.created_by_id,
        "created_at": format_datetime(business.created_at),
        "updated_at": format_datetime(business.updated_at),
    }


def user_to_dict(user, tenant=None, issuer=None) -> dict:
    data = {
        "id": user.id,
        "email": user.email,
        "roles": sorted(role.value for role in user.role_set),
        "email_verified": user.email_verified,
        "is_active": user.is_active,
        "tenant_id": user.tenant_id,
        "created_at": format_datetime(user.created_at),
    }
    if tenant is not None:
        data["tenant"] = tenant_to_dict(tenant)
        data["issuer_business"] = business_to_dict(issuer)
    return data


def bank_account_to_dict(account) -> dict:
    return {
        "id": account.id,
        "business_id": account.business_id,
        "swift": account.swift,
        "iban": account.iban,
        "bank_account_number": account.bank_account_number,
        "bank_name": account.bank_name,
    }


def article_to_dict(article) -> Optional[dict]:
    if article is None:
        return None
    return {
        "id": article.id,
        "business_id": article.business_id,
        "name": article.name,
        "description": article.description,
        "unit_price": format_money(article.unit_price),
        "unit": article.unit,
    }


def tax_to_dict(tax) -> Optional[dict]:
    if tax is None:
        return None
    return {"id": tax.id, "rate": _rate(tax.rate), "name": tax.name}


def status_to_dict(status) -> Optional[dict]:
    if status is None:
        return None
    return {"id": status.id, "code": status.code}


def item_to_dict(item, taxes: dict, articles: dict) -> dict:
    return {
        "id": item.id,
        "invoice_id": item.invoice_id,
        "description": item.description,
        "quantity": format_money(item.quantity),
        "unit_price": format_money(item.unit_price),
        "subtotal": format_money(item.subtotal),
        "tax_amount": format_money(item.tax_amount),
        "total": format_money(item.total),
        "sort_order": item.sort_order,
        "article": article_to_dict(articles.get(item.article_id)),
        "tax": tax_to_dict(taxes.get(item.tax_id)),
    }


def invoice_to_dict(bundle, host_url: str = "", with_items: bool = True) -> dict:
    """Render an ``InvoiceBundle``."""
    invoice = bundle.invoice
    data = {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "invoice_date": format_date(invoice.invoice_date),
        "due_date": format_date(invoice.due_date),
        "status": bundle.status.code if bundle.status else None,
        "subtotal": format_money(invoice.subtotal),
        "total": format_money(invoice.total),
        "issuer": business_to_dict(bundle.issuer, host_url),
        "receiver": business_to_dict(bundle.receiver, host_url),
        "created_at": format_datetime(invoice.created_at),
        "updated_at": format_datetime(invoice.updated_at),
    }
    if with_items:
        data["items"] = [
            item_to_dict(item, bundle.taxes, bundle.articles) for item in bundle.items
        ]
    return data
