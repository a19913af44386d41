"""
Admin user service.

Creates, updates and deletes users together with their role assignments. Every
operation takes the request's AsyncSession and the GrantorContext of the caller; nothing
here commits. Privilege checks run before the first write, so a rejected request
leaves the database untouched.

Update flow:
    1. privileges.validate_* gate the requested roles and admin organizations
    2. admin_sync applies the admin organization diff
    3. role_update recomputes the remaining roles, preserving existing scopes
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.admin_users.admin_sync import sync_admin_organizations
from app.features.admin_users.exceptions import (
    DuplicateEmail,
    OrganizationNotFound,
    RoleNotFound,
    UserNotFound,
    ValidationError,
)
from app.features.admin_users.privileges import (
    GrantorContext,
    validate_admin_organizations,
    validate_admin_role_requirements,
    validate_role_grant,
)
from app.features.admin_users.role_update import recompute_user_roles
from app.features.admin_users.schemas import (
    BulkOperationResult,
    BulkUserOperation,
    UserCreate,
    UserFilters,
    UserImportResult,
    UserStats,
    UserUpdate,
)
from app.features.organizations.dependencies import get_missing_organization_ids
from app.features.organizations.models import Organization
from app.features.roles.assignments import (
    assign_role,
    get_active_assignments,
    revoke_role,
)
from app.features.roles.models import Role, RoleAssignment
from app.features.roles.service import get_role_by_id, get_role_by_name, get_roles_by_names
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

# Columns that cannot be cleared through an update
_NOT_NULL_FIELDS = {"email", "name", "is_active", "email_verified"}

RECENT_SIGNUP_WINDOW = timedelta(days=30)


def _unique(values: Sequence[Optional[str]]) -> list:
    return list(dict.fromkeys(values))


async def _require_admin_role(db: AsyncSession) -> Role:
    role = await get_role_by_name(db, config.ADMIN_ROLE_NAME)
    if role is None:
        raise RoleNotFound(f"Role {config.ADMIN_ROLE_NAME} not found")
    return role


async def _lock_user(db: AsyncSession, user_id: str) -> User | None:
    """Load the user row with FOR UPDATE so concurrent role edits of one user serialize."""
    result = await db.execute(select(User).where(User.id == user_id).with_for_update())
    return result.scalar_one_or_none()


async def _check_organizations_exist(db: AsyncSession, organization_ids: list[Optional[str]]) -> None:
    missing = await get_missing_organization_ids(db, _unique([o for o in organization_ids if o]))
    if missing:
        raise OrganizationNotFound(f'Organization with id "{missing[0]}" not found')


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def get_user_roles(db: AsyncSession, user_id: str) -> list[RoleAssignment]:
    """Active role assignments of a user."""
    return await get_active_assignments(db, user_id)


def _like_pattern(term: str) -> str:
    """Substring pattern with ``%``/``_`` in the term matched literally (escape ``\\``)."""
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _filtered_users(filters: UserFilters):
    """
    SELECT of the users matching ``filters``.

    Role and organization filters select *users* through a subquery, so each matching
    user still comes back with all of its active roles.
    """
    stmt = select(User)

    if filters.search:
        pattern = _like_pattern(filters.search)
        stmt = stmt.where(or_(
            func.lower(User.name).like(pattern, escape="\\"),
            func.lower(User.email).like(pattern, escape="\\"),
        ))
    if filters.is_active is not None:
        stmt = stmt.where(User.is_active == filters.is_active)
    if filters.organization_id:
        stmt = stmt.where(User.id.in_(
            select(RoleAssignment.user_id).where(
                RoleAssignment.organization_id == filters.organization_id,
                RoleAssignment.is_active.is_(True),
            )
        ))
    if filters.role_id:
        stmt = stmt.where(User.id.in_(
            select(RoleAssignment.user_id).where(
                RoleAssignment.role_id == filters.role_id,
                RoleAssignment.is_active.is_(True),
            )
        ))
    return stmt.order_by(User.created_at.desc(), User.id)


async def _with_assignments(
    db: AsyncSession,
    users: list[User],
) -> list[tuple[User, list[RoleAssignment]]]:
    by_user: dict[str, list[RoleAssignment]] = {user.id: [] for user in users}
    if users:
        assignments = await db.execute(
            select(RoleAssignment)
            .where(RoleAssignment.user_id.in_(by_user.keys()), RoleAssignment.is_active.is_(True))
            .order_by(RoleAssignment.granted_at, RoleAssignment.id)
        )
        for assignment in assignments.scalars().all():
            by_user[assignment.user_id].append(assignment)
    return [(user, by_user[user.id]) for user in users]


async def list_users(
    db: AsyncSession,
    filters: UserFilters,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[tuple[User, list[RoleAssignment]]], int]:
    """
    List users with their active role assignments, newest first.

    Returns:
        (page of (user, assignments) pairs, total number of matching users)
    """
    stmt = _filtered_users(filters)
    total = await db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))

    result = await db.execute(stmt.limit(limit).offset(offset))
    return await _with_assignments(db, list(result.scalars().all())), total or 0


async def export_users(db: AsyncSession, filters: UserFilters) -> list[tuple[User, list[RoleAssignment]]]:
    """Every user matching ``filters`` with its active roles, unpaginated."""
    result = await db.execute(_filtered_users(filters))
    users = list(result.scalars().all())
    log.info(f"Exporting {len(users)} users")
    return await _with_assignments(db, users)


async def get_user_stats(db: AsyncSession) -> UserStats:
    """
    Platform-wide user counts.

    ``users_by_role`` counts distinct users holding an active assignment of each role
    (every role is listed, zero included). ``users_by_organization`` is keyed by
    organization slug, since names are not unique, and counts users whose primary
    organization it is. Recent signups are users created in the last 30 days.
    """
    cutoff = datetime.now(timezone.utc) - RECENT_SIGNUP_WINDOW
    counts = (await db.execute(
        select(
            func.count(User.id),
            func.count(case((User.is_active.is_(True), 1))),
            func.count(case((User.email_verified.is_(True), 1))),
            func.count(case((User.created_at >= cutoff, 1))),
        )
    )).one()
    total, active, verified, recent = (value or 0 for value in counts)

    by_role = await db.execute(
        select(Role.name, func.count(func.distinct(RoleAssignment.user_id)))
        .outerjoin(
            RoleAssignment,
            and_(RoleAssignment.role_id == Role.id, RoleAssignment.is_active.is_(True)),
        )
        .group_by(Role.id, Role.name)
        .order_by(Role.name)
    )
    by_organization = await db.execute(
        select(Organization.slug, func.count(User.id))
        .outerjoin(User, User.organization_id == Organization.id)
        .group_by(Organization.id, Organization.slug)
        .order_by(Organization.slug)
    )
    by_department = await db.execute(
        select(User.department, func.count(User.id))
        .where(User.department.is_not(None))
        .group_by(User.department)
        .order_by(User.department)
    )

    users_by_organization = {slug: count for slug, count in by_organization.all()}
    with_organization = sum(users_by_organization.values())
    return UserStats(
        total_users=total,
        active_users=active,
        inactive_users=total - active,
        verified_users=verified,
        unverified_users=total - verified,
        recent_signups=recent,
        users_by_role={name: count for name, count in by_role.all()},
        users_by_organization=users_by_organization,
        users_by_department={department: count for department, count in by_department.all()},
        average_users_per_organization=(
            round(with_organization / len(users_by_organization), 2) if users_by_organization else 0.0
        ),
    )


async def create_user(
    db: AsyncSession,
    data: UserCreate,
    grantor: GrantorContext,
    strict_roles: bool = False,
) -> User:
    """
    Create a user and grant its roles.

    Non-admin roles are scoped to ``data.organization_id``. The admin role is granted
    once per organization in ``data.admin_organization_ids`` (or in the primary
    organization when that list is omitted).

    Args:
        strict_roles: Fail with RoleNotFound on an unknown role name instead of
            skipping it with a warning (used by import)

    Raises:
        PrivilegeEscalation, ValidationError, DuplicateEmail, OrganizationNotFound,
        RoleNotFound
    """
    role_names = _unique(data.roles)
    is_admin = config.ADMIN_ROLE_NAME in role_names

    admin_org_ids: list[str] = []
    if is_admin:
        if data.admin_organization_ids is not None:
            admin_org_ids = _unique(data.admin_organization_ids)
        elif data.organization_id:
            admin_org_ids = [data.organization_id]

    validate_role_grant(role_names, grantor)
    validate_admin_role_requirements(role_names, admin_org_ids)
    if is_admin:
        validate_admin_organizations(admin_org_ids, grantor)

    await _check_organizations_exist(db, [data.organization_id, *admin_org_ids])

    roles_by_name = await get_roles_by_names(db, role_names)
    missing = [name for name in role_names if name not in roles_by_name]
    if missing:
        if strict_roles or config.ADMIN_ROLE_NAME in missing:
            raise RoleNotFound(f"Role {missing[0]} not found")
        for name in missing:
            log.warning(f"Role {name!r} not found, skipping for new user {data.email}")

    if await get_user_by_email(db, data.email) is not None:
        raise DuplicateEmail(data.email)

    user = User(
        email=data.email.lower(),
        name=data.name,
        avatar_url=data.avatar_url,
        organization_id=data.organization_id,
        department=data.department,
        position=data.position,
        is_active=data.is_active,
        email_verified=data.email_verified,
    )
    db.add(user)
    await db.flush()

    for name in role_names:
        role = roles_by_name.get(name)
        if role is None or name == config.ADMIN_ROLE_NAME:
            continue
        await assign_role(db, user.id, role.id, data.organization_id, grantor.id)

    if is_admin:
        admin_role = roles_by_name[config.ADMIN_ROLE_NAME]
        await sync_admin_organizations(db, user.id, admin_role.id, admin_org_ids, grantor.id)

    await db.refresh(user)
    log.info(f"Created user {user.email} ({user.id}) with roles {role_names}")
    return user


async def _check_revocations(
    db: AsyncSession,
    user_id: str,
    role_names: Optional[list[str]],
    desired_admin_orgs: Optional[list[str]],
    grantor: GrantorContext,
) -> None:
    """
    Reject an update that would revoke an assignment the grantor could not revoke
    through remove_user_role: super_admin for non-super admins, and admin in an
    organization the grantor does not manage.
    """
    if role_names is None and desired_admin_orgs is None:
        return

    current = await get_active_assignments(db, user_id)
    if desired_admin_orgs is not None:
        dropped_orgs = [
            a.organization_id or "global"
            for a in current
            if a.role.name == config.ADMIN_ROLE_NAME and a.organization_id not in desired_admin_orgs
        ]
        validate_admin_organizations(dropped_orgs, grantor)
    if role_names is not None:
        dropped_roles = [
            a.role.name
            for a in current
            if a.role.name != config.ADMIN_ROLE_NAME and a.role.name not in role_names
        ]
        validate_role_grant(dropped_roles, grantor)


async def update_user(
    db: AsyncSession,
    user_id: str,
    data: UserUpdate,
    grantor: GrantorContext,
) -> User | None:
    """
    Update a user's profile and, when given, its roles and admin organizations.

    - ``roles`` with admin and ``admin_organization_ids``: admin set replaced
    - ``roles`` with admin, no ``admin_organization_ids``: current admin set kept
      (the user must already administer at least one organization)
    - ``roles`` without admin: all admin assignments revoked
    - only ``admin_organization_ids``: admin set replaced, other roles untouched

    Revoking super_admin, or admin in an organization the grantor does not manage,
    is rejected the same way remove_user_role rejects it.

    Returns None if the user does not exist.
    """
    user = await _lock_user(db, user_id)
    if user is None:
        return None

    role_names = _unique(data.roles) if data.roles is not None else None
    desired_admin_orgs: list[str] | None = None
    admin_role: Role | None = None

    if role_names is not None:
        validate_role_grant(role_names, grantor)
        if config.ADMIN_ROLE_NAME in role_names:
            if data.admin_organization_ids is not None:
                desired_admin_orgs = _unique(data.admin_organization_ids)
                validate_admin_role_requirements(role_names, desired_admin_orgs)
            else:
                admin_role = await _require_admin_role(db)
                current = await get_active_assignments(db, user_id, role_id=admin_role.id)
                validate_admin_role_requirements(role_names, [a.organization_id for a in current])
        else:
            desired_admin_orgs = []
    elif data.admin_organization_ids is not None:
        desired_admin_orgs = _unique(data.admin_organization_ids)

    if desired_admin_orgs:
        validate_admin_organizations(desired_admin_orgs, grantor)
    await _check_revocations(db, user_id, role_names, desired_admin_orgs, grantor)

    await _check_organizations_exist(db, [data.organization_id, *(desired_admin_orgs or [])])

    updates: dict[str, Any] = data.model_dump(exclude_unset=True, exclude={"roles", "admin_organization_ids"})
    new_email = updates.get("email")
    if new_email and new_email.lower() != user.email.lower():
        if await get_user_by_email(db, new_email) is not None:
            raise DuplicateEmail(new_email)
        updates["email"] = new_email.lower()

    for key, value in updates.items():
        if value is None and key in _NOT_NULL_FIELDS:
            continue
        setattr(user, key, value)
    await db.flush()

    if desired_admin_orgs is not None:
        if admin_role is None:
            admin_role = await get_role_by_name(db, config.ADMIN_ROLE_NAME)
        if admin_role is None and desired_admin_orgs:
            raise RoleNotFound(f"Role {config.ADMIN_ROLE_NAME} not found")
        if admin_role is not None:
            await sync_admin_organizations(db, user.id, admin_role.id, desired_admin_orgs, grantor.id)

    if role_names is not None:
        result = await recompute_user_roles(db, user.id, role_names, data.organization_id, grantor.id)
        if result.skipped:
            log.warning(f"Skipped unknown roles for user {user.id}: {list(result.skipped)}")

    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, user_id: str) -> bool:
    """Delete a user; its role assignments go with it (ON DELETE CASCADE)."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        return False
    await db.delete(user)
    await db.flush()
    log.info(f"Deleted user {user_id}")
    return True


async def _check_single_grant(role: Role, organization_id: Optional[str], grantor: GrantorContext) -> None:
    validate_role_grant([role.name], grantor)
    if role.name == config.ADMIN_ROLE_NAME:
        if organization_id is None:
            raise ValidationError("Admin role requires at least one organization")
        validate_admin_organizations([organization_id], grantor)


async def assign_user_role(
    db: AsyncSession,
    user_id: str,
    role_id: str,
    organization_id: Optional[str],
    grantor: GrantorContext,
) -> RoleAssignment:
    """
    Grant one role to one user (insert or reactivate).

    Raises:
        UserNotFound, RoleNotFound, OrganizationNotFound, ValidationError,
        PrivilegeEscalation
    """
    if await _lock_user(db, user_id) is None:
        raise UserNotFound(user_id)
    role = await get_role_by_id(db, role_id)
    if role is None:
        raise RoleNotFound(f"Role {role_id} not found")

    await _check_single_grant(role, organization_id, grantor)
    await _check_organizations_exist(db, [organization_id])

    assignment, _ = await assign_role(db, user_id, role_id, organization_id, grantor.id)
    return assignment


async def remove_user_role(
    db: AsyncSession,
    user_id: str,
    role_id: str,
    organization_id: Optional[str],
    grantor: GrantorContext,
) -> bool:
    """
    Revoke one role from one user.

    Returns False when the user did not hold the role in that scope.
    """
    if await _lock_user(db, user_id) is None:
        raise UserNotFound(user_id)
    role = await get_role_by_id(db, role_id)
    if role is None:
        raise RoleNotFound(f"Role {role_id} not found")

    await _check_single_grant(role, organization_id, grantor)

    return await revoke_role(db, user_id, role_id, organization_id, revoked_by=grantor.id)


async def bulk_update_users(
    db: AsyncSession,
    operation: BulkUserOperation,
    grantor: GrantorContext,
) -> BulkOperationResult:
    from app.features.admin_users.bulk import execute_bulk_operation

    return await execute_bulk_operation(db, operation, grantor)


async def import_users(
    db: AsyncSession,
    rows: list[dict[str, Any]],
    grantor: GrantorContext,
) -> UserImportResult:
    from app.features.admin_users import importer

    return await importer.import_users(db, rows, grantor)
