"""
Role assignment store.

A RoleAssignment is identified by its natural key (user_id, role_id, organization_id).
Assigning an existing key reactivates the row instead of inserting a duplicate;
revoking only flips ``is_active`` so history is kept.

Every function takes the session explicitly and never commits.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.roles.audit import record_audit_event
from app.features.roles.models import Role, RoleAssignment
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class Active:
    granted_at: datetime
    granted_by: Optional[str]


@dataclass(frozen=True)
class Revoked:
    revoked_at: Optional[datetime]


AssignmentState = Union[Active, Revoked]


def assignment_state(assignment: RoleAssignment) -> AssignmentState:
    """Read the lifecycle state of an assignment."""
    if assignment.is_active:
        return Active(granted_at=assignment.granted_at, granted_by=assignment.granted_by)
    return Revoked(revoked_at=assignment.revoked_at)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _natural_key(user_id: str, role_id: str, organization_id: Optional[str]):
    clauses = [RoleAssignment.user_id == user_id, RoleAssignment.role_id == role_id]
    # NULL never equals NULL in SQL, so global scope needs IS NULL
    if organization_id is None:
        clauses.append(RoleAssignment.organization_id.is_(None))
    else:
        clauses.append(RoleAssignment.organization_id == organization_id)
    return clauses


async def find_assignment(
    db: AsyncSession,
    user_id: str,
    role_id: str,
    organization_id: Optional[str],
) -> RoleAssignment | None:
    """Find the assignment row for a natural key, active or not."""
    result = await db.execute(
        select(RoleAssignment).where(*_natural_key(user_id, role_id, organization_id))
    )
    return result.scalars().first()


async def get_active_assignments(
    db: AsyncSession,
    user_id: str,
    role_id: Optional[str] = None,
    exclude_role_ids: Iterable[str] = (),
) -> list[RoleAssignment]:
    """
    List a user's active assignments, oldest first.

    Args:
        db: Database session
        user_id: User whose assignments to read
        role_id: Only return assignments of this role
        exclude_role_ids: Skip assignments of these roles
    """
    stmt = select(RoleAssignment).where(
        RoleAssignment.user_id == user_id,
        RoleAssignment.is_active.is_(True),
    )
    if role_id is not None:
        stmt = stmt.where(RoleAssignment.role_id == role_id)
    excluded = list(exclude_role_ids)
    if excluded:
        stmt = stmt.where(RoleAssignment.role_id.not_in(excluded))
    stmt = stmt.order_by(RoleAssignment.granted_at, RoleAssignment.id)

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_active_role_names(db: AsyncSession, user_id: str) -> list[tuple[str, Optional[str]]]:
    """(role name, organization id) pairs for a user's active assignments."""
    result = await db.execute(
        select(Role.name, RoleAssignment.organization_id)
        .join(Role, Role.id == RoleAssignment.role_id)
        .where(RoleAssignment.user_id == user_id, RoleAssignment.is_active.is_(True))
    )
    return [(name, org_id) for name, org_id in result.all()]


async def assign_role(
    db: AsyncSession,
    user_id: str,
    role_id: str,
    organization_id: Optional[str],
    granted_by: Optional[str],
) -> tuple[RoleAssignment, bool]:
    """
    Insert or reactivate an assignment.

    Returns the assignment and whether anything was written. An already active
    assignment is returned untouched, keeping its original granted_at/granted_by.
    """
    assignment = await find_assignment(db, user_id, role_id, organization_id)

    if assignment is not None and assignment.is_active:
        return assignment, False

    now = _utcnow()
    if assignment is None:
        assignment = RoleAssignment(
            user_id=user_id,
            role_id=role_id,
            organization_id=organization_id,
            granted_by=granted_by,
            granted_at=now,
            is_active=True,
        )
        db.add(assignment)
    else:
        assignment.is_active = True
        assignment.granted_at = now
        assignment.granted_by = granted_by
        assignment.revoked_at = None
    await db.flush()
    await db.refresh(assignment, attribute_names=["role", "organization"])

    await record_audit_event(
        db,
        user_id=granted_by,
        action="assign_role",
        resource_type="user",
        resource_id=user_id,
        organization_id=organization_id,
        details={"role_id": role_id},
    )
    log.info(f"Assigned role {role_id} to user {user_id} (org={organization_id})")
    return assignment, True


async def revoke_role(
    db: AsyncSession,
    user_id: str,
    role_id: str,
    organization_id: Optional[str],
    revoked_by: Optional[str] = None,
) -> bool:
    """
    Soft-revoke an assignment.

    Returns True if an active assignment was revoked, False if there was none.
    """
    assignment = await find_assignment(db, user_id, role_id, organization_id)
    if assignment is None or not assignment.is_active:
        return False

    assignment.is_active = False
    assignment.revoked_at = _utcnow()
    await db.flush()

    await record_audit_event(
        db,
        user_id=revoked_by,
        action="remove_role",
        resource_type="user",
        resource_id=user_id,
        organization_id=organization_id,
        details={"role_id": role_id},
    )
    log.info(f"Revoked role {role_id} from user {user_id} (org={organization_id})")
    return True
