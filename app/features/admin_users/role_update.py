"""
Recompute a user's non-admin role assignments from a list of role names.

Assignments that already exist keep the organization they were granted in (a global
assignment stays global). Only roles introduced by the update use the fallback
organization. Admin assignments are owned by admin_sync and are not touched here.
"""
from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.roles.assignments import assign_role, get_active_assignments, revoke_role
from app.features.roles.service import get_role_by_name, get_roles_by_names
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class RoleUpdateResult:
    # (role name, organization id) pairs that were written
    assigned: tuple[tuple[str, Optional[str]], ...] = ()
    revoked: tuple[tuple[str, Optional[str]], ...] = ()
    # role names with no matching role
    skipped: tuple[str, ...] = ()


async def recompute_user_roles(
    db: AsyncSession,
    user_id: str,
    role_names: Iterable[str],
    fallback_organization_id: Optional[str],
    granted_by: Optional[str],
) -> RoleUpdateResult:
    """
    Make the user's active non-admin assignments match ``role_names``.

    Roles no longer listed are revoked in the organization they were stored with.
    Roles still listed are upserted in their existing organization(s), which writes
    nothing for an already active assignment. New roles are assigned in
    ``fallback_organization_id``. Unknown role names are skipped with a warning.
    """
    admin_role = await get_role_by_name(db, config.ADMIN_ROLE_NAME)
    excluded = [admin_role.id] if admin_role is not None else []

    existing = await get_active_assignments(db, user_id, exclude_role_ids=excluded)
    existing_orgs_by_role_id: dict[str, list[Optional[str]]] = {}
    for assignment in existing:
        existing_orgs_by_role_id.setdefault(assignment.role_id, []).append(assignment.organization_id)

    wanted: list[str] = []
    for name in role_names:
        if name != config.ADMIN_ROLE_NAME and name not in wanted:
            wanted.append(name)

    roles_by_name = await get_roles_by_names(db, wanted)
    skipped = [name for name in wanted if name not in roles_by_name]
    for name in skipped:
        log.warning(f"Role {name!r} not found, skipping for user {user_id}")

    desired_roles = [roles_by_name[name] for name in wanted if name in roles_by_name]
    desired_role_ids = {role.id for role in desired_roles}

    revoked: list[tuple[str, Optional[str]]] = []
    for assignment in existing:
        if assignment.role_id in desired_role_ids:
            continue
        if await revoke_role(db, user_id, assignment.role_id, assignment.organization_id, revoked_by=granted_by):
            revoked.append((assignment.role.name, assignment.organization_id))

    assigned: list[tuple[str, Optional[str]]] = []
    for role in desired_roles:
        targets = existing_orgs_by_role_id.get(role.id) or [fallback_organization_id]
        for org_id in targets:
            _, changed = await assign_role(db, user_id, role.id, org_id, granted_by)
            if changed:
                assigned.append((role.name, org_id))

    return RoleUpdateResult(assigned=tuple(assigned), revoked=tuple(revoked), skipped=tuple(skipped))
