"""
Audit helpers for role grants.

Grants and revocations are stored as AuditLog rows in the caller's transaction.
Denied grant attempts never reach the database (the request is rolled back), so they
are written to the ``app.audit`` logger instead.
"""
from typing import Any, Dict, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.roles.models import AuditLog
from app.utils import get_logger


audit_log = get_logger("app.audit")


async def record_audit_event(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g. "assign_role", "remove_role")
        resource_type: Type of resource (e.g. "user")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details

    Returns:
        Created AuditLog object (flushed, not committed)
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
    )
    db.add(entry)
    await db.flush()
    return entry


def log_privilege_denial(grantor_id: str, unauthorized_org_ids: Sequence[str]) -> None:
    """Default sink for denied admin grants."""
    audit_log.warning(
        "Privilege escalation denied: grantor=%s unauthorized_org_ids=%s",
        grantor_id,
        list(unauthorized_org_ids),
    )
