"""Multi-tenant access policy.

Every access decision in the application goes through this module.  The
acting user is passed in as an ``Actor``; nothing here reads the request.

Rules, applied in order:

1. An inactive actor is always denied.
2. Members of an admin tenant may read resources of any tenant.
3. Writes to another tenant require ``ROLE_ADMIN`` in an admin tenant;
   everybody may write to their own tenant.
4. Members of a regular tenant are confined to their own tenant.
5. Taxes and invoice statuses are platform reference data: writes need
   ``ROLE_ADMIN`` in an admin tenant, statuses are readable only by
   admin-tenant members, taxes by everybody.
6. Invoices of a regular tenant are always issued by the tenant's issuer
   business.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from errors import AccessDenied, ValidationError
from models import Role

logger = logging.getLogger(__name__)

WRITE_DENIED = "You do not have permission to modify this tenant's entities"
BUSINESS_DENIED = "You do not have access to this business"


class Action(str, enum.Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Actor:
    user_id: int
    tenant_id: int
    tenant_is_admin: bool
    roles: frozenset = frozenset({Role.USER})
    is_active: bool = True

    @classmethod
    def from_user(cls, user, tenant) -> "Actor":
        return cls(
            user_id=user.id,
            tenant_id=user.tenant_id,
            tenant_is_admin=bool(tenant and tenant.is_admin),
            roles=user.role_set,
            is_active=bool(user.is_active),
        )

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles


# ---------------------------------------------------------------------------
# Tenant scoping
# ---------------------------------------------------------------------------

def ensure_active(actor: Actor) -> None:
    if not actor.is_active:
        logger.warning("Inactive user %s denied", actor.user_id)
        raise AccessDenied("User account is inactive")


def can_read_all(actor: Actor) -> bool:
    return actor.is_active and actor.tenant_is_admin


def can_access_tenant(actor: Actor, tenant_id: Optional[int], action: Action) -> bool:
    if not actor.is_active or tenant_id is None:
        return False
    if tenant_id == actor.tenant_id:
        return True
    if not actor.tenant_is_admin:
        return False
    if action is Action.READ:
        return True
    return actor.is_admin


def authorize_tenant(
    actor: Actor,
    tenant_id: Optional[int],
    action: Action,
    message: Optional[str] = None,
) -> None:
    """Raise ``AccessDenied`` unless *actor* may perform *action* on *tenant_id*."""
    ensure_active(actor)
    if can_access_tenant(actor, tenant_id, action):
        return
    logger.warning(
        "User %s denied %s on tenant %s", actor.user_id, action.value, tenant_id
    )
    if message is None:
        message = WRITE_DENIED if action is Action.WRITE else BUSINESS_DENIED
    raise AccessDenied(message)


def authorize_business(actor: Actor, business, action: Action = Action.READ) -> None:
    authorize_tenant(
        actor,
        business.tenant_id,
        action,
        BUSINESS_DENIED if action is Action.READ else WRITE_DENIED,
    )


def visible_tenant_ids(actor: Actor) -> Optional[list[int]]:
    """Tenant ids *actor* may list, or None when every tenant is visible."""
    ensure_active(actor)
    if actor.tenant_is_admin:
        return None
    return [actor.tenant_id]


def not_found_message(actor: Actor, entity: str) -> str:
    if actor.tenant_is_admin:
        return f"{entity} not found"
    return f"{entity} not found or you do not have access to this {entity.lower()}"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

def _require_platform_admin(actor: Actor, what: str) -> None:
    if not (actor.tenant_is_admin and actor.is_admin):
        logger.warning("User %s denied managing %s", actor.user_id, what)
        raise AccessDenied(f"Only administrators of an admin tenant can manage {what}")


def authorize_tax(actor: Actor, action: Action) -> None:
    ensure_active(actor)
    if action is Action.WRITE:
        _require_platform_admin(actor, "taxes")


def authorize_invoice_status(actor: Actor, action: Action) -> None:
    ensure_active(actor)
    if action is Action.WRITE:
        _require_platform_admin(actor, "invoice statuses")
    elif not actor.tenant_is_admin:
        raise AccessDenied("Only admin tenants can view invoice statuses")


def authorize_all_invoices(actor: Actor) -> None:
    ensure_active(actor)
    if not actor.tenant_is_admin:
        raise AccessDenied("Access denied. Only admin tenants can view all invoices.")


# ---------------------------------------------------------------------------
# Users & tenants
# ---------------------------------------------------------------------------

def authorize_user_management(
    actor: Actor,
    target_tenant_id: Optional[int] = None,
    message: str = "You do not have permission to manage this user",
) -> None:
    """Only ``ROLE_ADMIN`` manages users; regular tenants only their own."""
    ensure_active(actor)
    if not actor.is_admin:
        raise AccessDenied("Only admin users can manage other users")
    if target_tenant_id is None or actor.tenant_is_admin:
        return
    if target_tenant_id != actor.tenant_id:
        logger.warning("User %s denied managing users of tenant %s", actor.user_id, target_tenant_id)
        raise AccessDenied(message)


def authorize_tenant_admin_flag(actor: Actor) -> None:
    ensure_active(actor)
    if not actor.tenant_is_admin:
        raise AccessDenied("Only admin tenants can change the admin status of a tenant")


def authorize_tenant_delete(actor: Actor, tenant_id: int) -> None:
    ensure_active(actor)
    if not actor.tenant_is_admin:
        raise AccessDenied("Only admin tenants can delete tenants")
    authorize_tenant(actor, tenant_id, Action.WRITE)


# ---------------------------------------------------------------------------
# Issuer consistency
# ---------------------------------------------------------------------------

def resolve_issuer_id(actor: Actor, tenant, requested_business) -> int:
    """Return the business id that must issue a new invoice.

    Regular tenants always issue from their issuer business.  Admin tenants
    issue from *requested_business*, subject to the write rule.
    """
    ensure_active(actor)
    if not actor.tenant_is_admin:
        if tenant is None or tenant.issuer_business_id is None:
            raise ValidationError("Tenant does not have an issuer business")
        return tenant.issuer_business_id
    authorize_tenant(actor, requested_business.tenant_id, Action.WRITE)
    return requested_business.id


def authorize_invoice_write(actor: Actor, tenant, invoice, issuer_tenant_id: int) -> None:
    """Check that *actor* may modify *invoice*."""
    ensure_active(actor)
    if not actor.tenant_is_admin:
        if tenant is None or tenant.issuer_business_id is None:
            raise ValidationError("Tenant does not have an issuer business")
        if invoice.issuer_id != tenant.issuer_business_id:
            raise AccessDenied("You can only update invoices issued by your tenant's business")
        return
    authorize_tenant(actor, issuer_tenant_id, Action.WRITE)


def authorize_issuer_change(actor: Actor, new_issuer_tenant_id: Optional[int]) -> None:
    """Only admin tenants re-issue invoices, and only into tenants they may write."""
    ensure_active(actor)
    if not actor.tenant_is_admin:
        raise AccessDenied("You cannot change the issuer business")
    if new_issuer_tenant_id is not None:
        authorize_tenant(actor, new_issuer_tenant_id, Action.WRITE)
