"""
Privilege checks for role grants.

All checks run before the request writes anything, so a denial rejects the whole
request.
"""
from dataclasses import dataclass, field
from typing import Callable, Collection, Iterable, Optional, Sequence

from app.core import config
from app.features.admin_users.exceptions import PrivilegeEscalation, ValidationError
from app.features.roles.audit import log_privilege_denial


AuditSink = Callable[[str, Sequence[str]], None]


@dataclass(frozen=True)
class GrantorContext:
    """
    The actor issuing a grant, as resolved by the authorization layer.

    ``admin_organization_ids`` are the organizations this grantor administers.
    """
    id: str
    is_super_admin: bool = False
    admin_organization_ids: frozenset[str] = field(default_factory=frozenset)
    roles: tuple[str, ...] = ()


def validate_admin_organizations(
    requested_org_ids: Iterable[str],
    grantor: GrantorContext,
    audit_sink: Optional[AuditSink] = None,
) -> None:
    """
    Check that the grantor may grant admin access to every requested organization.

    Raises:
        PrivilegeEscalation: naming every organization outside the grantor's scope,
            in request order
    """
    if grantor.is_super_admin:
        return

    unauthorized: list[str] = []
    for org_id in requested_org_ids:
        if org_id not in grantor.admin_organization_ids and org_id not in unauthorized:
            unauthorized.append(org_id)

    if not unauthorized:
        return

    (audit_sink or log_privilege_denial)(grantor.id, unauthorized)
    raise PrivilegeEscalation(
        "Privilege escalation denied: You can only grant admin access to organizations "
        f"you manage. Unauthorized organization IDs: {', '.join(unauthorized)}",
        unauthorized_org_ids=unauthorized,
    )


def validate_admin_role_requirements(role_names: Collection[str], admin_org_ids: Sequence[str] | None) -> None:
    """An admin role without any organization is rejected."""
    if config.ADMIN_ROLE_NAME in role_names and not admin_org_ids:
        raise ValidationError("Admin role requires at least one organization")


def validate_role_grant(
    role_names: Collection[str],
    grantor: GrantorContext,
    audit_sink: Optional[AuditSink] = None,
) -> None:
    """Only a super admin may grant the super admin role."""
    if config.SUPER_ADMIN_ROLE_NAME in role_names and not grantor.is_super_admin:
        (audit_sink or log_privilege_denial)(grantor.id, [])
        raise PrivilegeEscalation(
            f"Privilege escalation denied: Only super admins can grant the "
            f"{config.SUPER_ADMIN_ROLE_NAME} role"
        )
