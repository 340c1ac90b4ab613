"""Authentication services: current actor, registration, login, bootstrap."""

from __future__ import annotations

import logging
import secrets
from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify
from werkzeug.security import check_password_hash, generate_password_hash

from errors import AccessDenied, Conflict, NotFound, ValidationError
from extensions import db
from mailer import MailerError, send_verification_email
from models import Role, Tenant, User
from services.policy import Actor
from services.tenant import attach_first_business, create_tenant
from utils import new_token

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

ADMIN_EMAIL = "admin@localhost"
ADMIN_TENANT_NAME = "Platform administration"


def get_current_user() -> Optional[User]:
    """Return the currently logged-in user from ``flask.g``."""
    return getattr(g, "current_user", None)


def current_actor() -> Actor:
    """Build the ``Actor`` for the logged-in user.  Call behind ``login_required``."""
    user = get_current_user()
    return Actor.from_user(user, getattr(g, "current_tenant", None))


def login_required(f):
    """Decorator that answers 401 if user is not authenticated."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not get_current_user():
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)

    return decorated


def validate_password(password) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    return password


def normalize_email(email) -> str:
    email = (email or "").strip() if isinstance(email, str) else ""
    if not email or "@" not in email:
        raise ValidationError("A valid email is required", field="email")
    return email


def ensure_email_free(email: str, exclude_user_id: Optional[int] = None) -> None:
    existing = User.query.filter_by(email=email).first()
    if existing and existing.id != exclude_user_id:
        raise Conflict("A user with this email already exists", field="email")


def notify_verification(user: User) -> None:
    """Send the verification e-mail; failures are logged, never raised."""
    try:
        send_verification_email(
            current_app.config["EMAIL_CONFIG"],
            current_app.config["APP_CONFIG"],
            user.email,
            user.email_verification_token,
        )
    except MailerError as exc:
        logger.warning("Verification email to %s failed: %s", user.email, exc)


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------

def register(email, password) -> User:
    """Create a user together with a tenant of its own.

    Existing tenants are joined by invitation only.  The new tenant gets a
    first business named after it, which becomes the tenant's issuer
    business.  Each stage is committed before the next one references it.
    """
    if not email or password is None:
        raise ValidationError("Email and password are required")
    email = normalize_email(email)
    ensure_email_free(email)
    validate_password(password)

    tenant = create_tenant(f"Tenant for {email}")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        roles=[Role.USER.value],
        email_verified=False,
        email_verification_token=new_token(),
        is_active=True,
        tenant_id=tenant.id,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Registered user %s in tenant %s", user.email, tenant.id)

    attach_first_business(tenant, user)

    notify_verification(user)
    return user


def verify_email(token) -> tuple[User, bool]:
    """Mark the owner of *token* verified.  Returns ``(user, already_verified)``."""
    if not token:
        raise ValidationError("Verification token is required", field="token")
    user = User.query.filter_by(email_verification_token=token).first()
    if user is None:
        raise ValidationError("Verification token is invalid or has expired", field="token")
    if user.email_verified:
        return user, True
    user.email_verified = True
    user.email_verification_token = None
    db.session.commit()
    logger.info("Email verified for user %s", user.id)
    return user, False


def authenticate(email, password) -> Optional[User]:
    """Return the user for valid credentials, None for wrong ones.

    Unverified and inactive accounts are refused after the password check.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = User.query.filter_by(email=str(email).strip()).first()
    if user is None or not check_password_hash(user.password_hash, password):
        logger.warning("Failed login for %s", email)
        return None
    if not user.email_verified:
        raise AccessDenied("Please verify your email before logging in")
    if not user.is_active:
        raise AccessDenied("Your account is deactivated. Please contact the administrator.")
    return user


def issue_remember_me_token(user: User) -> str:
    user.remember_me_token = new_token()
    db.session.commit()
    return user.remember_me_token


def user_for_remember_me_token(token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    user = User.query.filter_by(remember_me_token=token).first()
    if user is None or not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

def provision_user(
    email,
    password,
    *,
    admin: bool = False,
    tenant_id: Optional[int] = None,
    admin_tenant: bool = False,
) -> User:
    """Create a verified, active user for operators (CLI).

    Without *tenant_id* a tenant named ``Tenant for {email}`` is reused or
    created, and bootstrapped with a first business when new.
    """
    email = normalize_email(email)
    ensure_email_free(email)
    validate_password(password)

    is_new_tenant = False
    if tenant_id is not None:
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
    else:
        name = f"Tenant for {email}"
        tenant = Tenant.query.filter_by(name=name).first()
        if tenant is None:
            tenant = create_tenant(name, is_admin=admin_tenant)
            is_new_tenant = True
    if admin_tenant and not tenant.is_admin:
        tenant.is_admin = True

    roles = [Role.USER.value]
    if admin:
        roles.append(Role.ADMIN.value)
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        roles=roles,
        email_verified=True,
        is_active=True,
        tenant_id=tenant.id,
    )
    db.session.add(user)
    db.session.commit()

    if is_new_tenant:
        attach_first_business(tenant, user)
    logger.info("Provisioned user %s in tenant %s", email, tenant.id)
    return user


def ensure_admin_user():
    """Create a default admin tenant and user if the users table is empty."""
    if User.query.count() == 0:
        password = secrets.token_urlsafe(12)
        tenant = create_tenant(ADMIN_TENANT_NAME, is_admin=True, has_paid=True)
        admin = User(
            email=ADMIN_EMAIL,
            password_hash=generate_password_hash(password),
            roles=[Role.USER.value, Role.ADMIN.value],
            email_verified=True,
            is_active=True,
            tenant_id=tenant.id,
        )
        db.session.add(admin)
        db.session.commit()
        attach_first_business(tenant, admin)
        # Print to stdout only; never log credentials to persistent log files
        print(
            f"Created default admin user {ADMIN_EMAIL}. Initial password: {password} "
            "(change immediately after first login)"
        )
