"""Audit logging service."""

from __future__ import annotations

from typing import Optional

from extensions import db
from models import AuditLog


def log_action(
    actor,
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: str = "",
) -> None:
    """Record an audit log entry.

    NOTE: This does NOT commit; the caller is responsible for committing
    the session together with the change being recorded.
    """
    db.session.add(
        AuditLog(
            tenant_id=actor.tenant_id if actor else None,
            user_id=actor.user_id if actor else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
    )
