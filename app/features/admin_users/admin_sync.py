"""
Synchronize a user's organization-scoped admin assignments with a desired set.

Only the difference is applied: organizations in both the current and the desired
set keep their assignment (and its granted_at/granted_by) as is.
"""
from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.admin_users.exceptions import ValidationError
from app.features.roles.assignments import assign_role, get_active_assignments, revoke_role
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class AdminSyncResult:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def _ordered_unique(org_ids: Iterable[Optional[str]]) -> list[str]:
    seen: list[str] = []
    for org_id in org_ids:
        if org_id is None:
            raise ValidationError("Admin role assignments must be scoped to an organization")
        if org_id not in seen:
            seen.append(org_id)
    return seen


async def sync_admin_organizations(
    db: AsyncSession,
    user_id: str,
    admin_role_id: str,
    desired_org_ids: Iterable[Optional[str]],
    granted_by: Optional[str],
) -> AdminSyncResult:
    """
    Make the user's active admin assignments match ``desired_org_ids``.

    The caller must have validated ``desired_org_ids`` against the grantor first.
    An empty set revokes admin access everywhere. Running it twice with the same
    set writes nothing the second time.
    """
    desired = _ordered_unique(desired_org_ids)

    current = [
        a.organization_id
        for a in await get_active_assignments(db, user_id, role_id=admin_role_id)
    ]

    to_add = [org_id for org_id in desired if org_id not in current]
    to_remove = [org_id for org_id in current if org_id not in desired]

    for org_id in to_add:
        await assign_role(db, user_id, admin_role_id, org_id, granted_by)
    for org_id in to_remove:
        await revoke_role(db, user_id, admin_role_id, org_id, revoked_by=granted_by)

    if to_add or to_remove:
        log.info(f"Admin organizations for user {user_id}: added={to_add} removed={to_remove}")
    return AdminSyncResult(added=tuple(to_add), removed=tuple(to_remove))
