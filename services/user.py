"""User management: listing, creation, invitations, updates."""

from __future__ import annotations

import logging
from typing import Optional

from flask import current_app
from werkzeug.security import generate_password_hash

from errors import AccessDenied, NotFound, ValidationError
from extensions import db
from mailer import MailerError, send_invitation_email
from models import VALID_ROLES, AuditLog, Business, Role, Tenant, User
from services.audit import log_action
from services.auth import ensure_email_free, normalize_email, validate_password
from services.policy import Actor, authorize_user_management
from utils import new_token, safe_int

logger = logging.getLogger(__name__)


def _parse_roles(raw) -> list[str]:
    if raw is None:
        return [Role.USER.value]
    if not isinstance(raw, list) or any(r not in VALID_ROLES for r in raw):
        raise ValidationError(
            f"Roles must be a list of: {', '.join(VALID_ROLES)}", field="roles"
        )
    roles = list(dict.fromkeys(raw))
    if Role.USER.value not in roles:
        roles.insert(0, Role.USER.value)
    return roles


def _target_tenant(actor: Actor, raw_tenant_id, message: str) -> Tenant:
    if raw_tenant_id is None:
        tenant = db.session.get(Tenant, actor.tenant_id)
    else:
        tenant = db.session.get(Tenant, safe_int(raw_tenant_id))
        if tenant is None:
            raise ValidationError("Tenant not found", field="tenant_id")
    authorize_user_management(actor, tenant.id, message)
    return tenant


def list_users(actor: Actor, tenant_id: Optional[int] = None) -> list[User]:
    authorize_user_management(actor)
    query = User.query
    if actor.tenant_is_admin:
        if tenant_id:
            if db.session.get(Tenant, tenant_id) is None:
                raise NotFound("Tenant not found")
            query = query.filter_by(tenant_id=tenant_id)
    else:
        query = query.filter_by(tenant_id=actor.tenant_id)
    return query.order_by(User.id).all()


def get_user(actor: Actor, user_id: int) -> User:
    authorize_user_management(actor)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    authorize_user_management(actor, user.tenant_id)
    return user


def create_user(actor: Actor, data: dict) -> User:
    authorize_user_management(actor)
    if not data.get("email") or data.get("password") is None:
        raise ValidationError("Email and password are required")
    email = normalize_email(data["email"])
    ensure_email_free(email)
    validate_password(data["password"])
    tenant = _target_tenant(
        actor, data.get("tenant_id"), "You do not have permission to create users for this tenant"
    )

    verified = bool(data.get("email_verified", False))
    user = User(
        email=email,
        password_hash=generate_password_hash(data["password"]),
        roles=_parse_roles(data.get("roles")),
        email_verified=verified,
        email_verification_token=None if verified else new_token(),
        is_active=bool(data.get("is_active", True)),
        tenant_id=tenant.id,
    )
    db.session.add(user)
    db.session.flush()
    log_action(actor, "create", "user", user.id, email)
    db.session.commit()
    logger.info("User %s created in tenant %s by %s", user.id, tenant.id, actor.user_id)
    return user


def invite_user(actor: Actor, data: dict) -> User:
    """Create an unverified user with a throw-away password and mail an invitation."""
    authorize_user_management(actor)
    if not data.get("email"):
        raise ValidationError("Email is required", field="email")
    email = normalize_email(data["email"])
    ensure_email_free(email)
    tenant = _target_tenant(
        actor, data.get("tenant_id"), "You do not have permission to invite users for this tenant"
    )

    token = new_token()
    user = User(
        email=email,
        password_hash=generate_password_hash(new_token(16)),
        roles=_parse_roles(data.get("roles")),
        email_verified=False,
        email_verification_token=token,
        is_active=True,
        tenant_id=tenant.id,
    )
    db.session.add(user)
    db.session.flush()
    log_action(actor, "invite", "user", user.id, email)
    db.session.commit()
    logger.info("User %s invited to tenant %s", email, tenant.id)

    try:
        send_invitation_email(
            current_app.config["EMAIL_CONFIG"],
            current_app.config["APP_CONFIG"],
            email,
            token,
            tenant.name,
        )
    except MailerError as exc:
        logger.warning("Invitation email to %s failed: %s", email, exc)
    return user


def accept_invitation(token, password) -> User:
    if not token or password is None:
        raise ValidationError("Token and password are required")
    validate_password(password)
    user = User.query.filter_by(email_verification_token=token).first()
    if user is None:
        raise ValidationError("Invalid or expired invitation token", field="token")
    user.password_hash = generate_password_hash(password)
    user.email_verified = True
    user.email_verification_token = None
    db.session.commit()
    logger.info("Invitation accepted by user %s", user.id)
    return user


def update_user(actor: Actor, user_id: int, data: dict) -> User:
    user = get_user(actor, user_id)

    if "email" in data:
        email = normalize_email(data["email"])
        ensure_email_free(email, exclude_user_id=user.id)
        user.email = email
    if "password" in data:
        user.password_hash = generate_password_hash(validate_password(data["password"]))
    if "roles" in data:
        user.roles = _parse_roles(data["roles"])
    if "is_active" in data:
        user.is_active = bool(data["is_active"])
    if "tenant_id" in data and data["tenant_id"] is not None:
        new_tenant = db.session.get(Tenant, safe_int(data["tenant_id"]))
        if new_tenant is None:
            raise ValidationError("Tenant not found", field="tenant_id")
        if new_tenant.id != user.tenant_id:
            if not actor.tenant_is_admin:
                raise AccessDenied("Only admin tenant users can change user tenant")
            user.tenant_id = new_tenant.id

    log_action(actor, "update", "user", user.id, f"fields={sorted(data)}")
    db.session.commit()
    logger.info("User %s updated by %s", user.id, actor.user_id)
    return user


def delete_user(actor: Actor, user_id: int) -> None:
    user = get_user(actor, user_id)
    if user.id == actor.user_id:
        raise ValidationError("You cannot delete your own account")
    if Business.query.filter_by(created_by_id=user.id).first() is not None:
        # Businesses keep their creator; hand them over to the acting admin.
        Business.query.filter_by(created_by_id=user.id).update(
            {Business.created_by_id: actor.user_id}, synchronize_session=False
        )
    AuditLog.query.filter_by(user_id=user.id).update(
        {AuditLog.user_id: None}, synchronize_session=False
    )
    db.session.delete(user)
    log_action(actor, "delete", "user", user_id, user.email)
    db.session.commit()
    logger.info("User %s deleted by %s", user_id, actor.user_id)
