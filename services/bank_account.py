"""Bank accounts of a business."""

from __future__ import annotations

import logging
from typing import Optional

from errors import NotFound, ValidationError
from extensions import db
from models import BankAccount
from services.audit import log_action
from services.business import get_business
from services.policy import Action, Actor

logger = logging.getLogger(__name__)

SWIFT_MAX_LENGTH = 11
IBAN_MAX_LENGTH = 34


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _apply_fields(account: BankAccount, data: dict) -> None:
    if "bank_account_number" in data:
        account.bank_account_number = _clean(data["bank_account_number"])
    if not account.bank_account_number:
        raise ValidationError("Bank account number is required", field="bank_account_number")
    if "swift" in data:
        swift = _clean(data["swift"])
        if swift and len(swift) > SWIFT_MAX_LENGTH:
            raise ValidationError(
                f"SWIFT code must be at most {SWIFT_MAX_LENGTH} characters", field="swift"
            )
        account.swift = swift
    if "iban" in data:
        iban = _clean(data["iban"])
        if iban and len(iban) > IBAN_MAX_LENGTH:
            raise ValidationError(
                f"IBAN must be at most {IBAN_MAX_LENGTH} characters", field="iban"
            )
        account.iban = iban
    if "bank_name" in data:
        account.bank_name = _clean(data["bank_name"])


def list_accounts(actor: Actor, business_id: int) -> list[BankAccount]:
    business = get_business(actor, business_id)
    return BankAccount.query.filter_by(business_id=business.id).order_by(BankAccount.id).all()


def get_account(
    actor: Actor, business_id: int, account_id: int, action: Action = Action.READ
) -> BankAccount:
    business = get_business(actor, business_id, action)
    account = BankAccount.query.filter_by(id=account_id, business_id=business.id).first()
    if account is None:
        raise NotFound("Bank account not found")
    return account


def create_account(actor: Actor, business_id: int, data: dict) -> BankAccount:
    business = get_business(actor, business_id, Action.WRITE)
    account = BankAccount(business_id=business.id)
    _apply_fields(account, data)
    db.session.add(account)
    db.session.flush()
    log_action(actor, "create", "bank_account", account.id, f"business={business.id}")
    db.session.commit()
    logger.info("Bank account %s added to business %s", account.id, business.id)
    return account


def update_account(actor: Actor, business_id: int, account_id: int, data: dict) -> BankAccount:
    account = get_account(actor, business_id, account_id, Action.WRITE)
    _apply_fields(account, data)
    log_action(actor, "update", "bank_account", account.id, f"fields={sorted(data)}")
    db.session.commit()
    return account


def delete_account(actor: Actor, business_id: int, account_id: int) -> None:
    account = get_account(actor, business_id, account_id, Action.WRITE)
    db.session.delete(account)
    log_action(actor, "delete", "bank_account", account_id, f"business={business_id}")
    db.session.commit()
