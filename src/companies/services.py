"""Service helpers for the companies app."""
from __future__ import annotations

from typing import Any, TYPE_CHECKING

from companies.models import AuditLog, Company

if TYPE_CHECKING:
    from accounts.models import User


def create_audit_log(
    actor: User | None,
    company: Company,
    action: str,
    entity_type: str,
    entity_id: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditLog:
    """Create and return a new :class:`~companies.models.AuditLog` entry."""
    if actor is not None and not getattr(actor, "pk", None):
        actor = None
    return AuditLog.objects.create(
        actor=actor,
        company=company,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=before,
        after_json=after,
    )


def get_user_company(user) -> Company | None:
    """Return the active company of *user*, or None."""
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    company = getattr(user, "company", None)
    if company is None or not company.is_active:
        return None
    return company
