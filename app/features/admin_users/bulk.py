"""
Bulk user operations.

activate/deactivate/delete run as one set-based statement. assign_role/remove_role go
through the single-user service functions, one SAVEPOINT per user, so one failing
user never undoes or stops the others.
"""
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.admin_users.exceptions import AdminUserError, RoleNotFound, ValidationError
from app.features.admin_users.privileges import (
    GrantorContext,
    validate_admin_organizations,
    validate_role_grant,
)
from app.features.admin_users.schemas import BulkOperationResult, BulkUserOperation
from app.features.admin_users.service import assign_user_role, remove_user_role
from app.features.roles.service import get_role_by_id
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

VERBS = {
    "activate": "activated",
    "deactivate": "deactivated",
    "delete": "deleted",
    "assign_role": "assigned role to",
    "remove_role": "removed role from",
}


def summarize(operation: str, affected_count: int, total: int, errors: list[str]) -> BulkOperationResult:
    if affected_count == total:
        message = f"Successfully {VERBS[operation]} {affected_count} users"
    else:
        message = f"Partially completed: {affected_count} out of {total} users processed successfully"
    return BulkOperationResult(
        success=affected_count == total,
        affected_count=affected_count,
        message=message,
        errors=errors,
    )


async def _apply_status_change(db: AsyncSession, operation: BulkUserOperation) -> BulkOperationResult:
    user_ids = operation.user_ids
    result = await db.execute(select(User.id).where(User.id.in_(user_ids)))
    existing = set(result.scalars().all())
    errors = [f"User {user_id} not found" for user_id in user_ids if user_id not in existing]

    if operation.operation == "delete":
        stmt = delete(User).where(User.id.in_(user_ids))
    else:
        stmt = (
            update(User)
            .where(User.id.in_(user_ids))
            .values(is_active=operation.operation == "activate")
        )
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    affected = result.rowcount or 0

    log.info(f"Bulk {operation.operation}: {affected}/{len(user_ids)} users")
    return summarize(operation.operation, affected, len(user_ids), errors)


async def _apply_role_change(
    db: AsyncSession,
    operation: BulkUserOperation,
    grantor: GrantorContext,
) -> BulkOperationResult:
    if not operation.role_id:
        raise ValidationError("Role ID is required for role assignment/removal operations")

    role = await get_role_by_id(db, operation.role_id)
    if role is None:
        raise RoleNotFound(f"Role {operation.role_id} not found")

    validate_role_grant([role.name], grantor)
    if role.name == config.ADMIN_ROLE_NAME:
        if not operation.organization_id:
            raise ValidationError("Admin role requires at least one organization")
        validate_admin_organizations([operation.organization_id], grantor)

    assigning = operation.operation == "assign_role"
    affected = 0
    errors: list[str] = []
    for user_id in operation.user_ids:
        try:
            async with db.begin_nested():
                if assigning:
                    await assign_user_role(db, user_id, role.id, operation.organization_id, grantor)
                else:
                    await remove_user_role(db, user_id, role.id, operation.organization_id, grantor)
            affected += 1
        except (AdminUserError, IntegrityError) as e:
            reason = e.message if isinstance(e, AdminUserError) else str(e.orig)
            if assigning:
                errors.append(f"Failed to assign role to user {user_id}: {reason}")
            else:
                errors.append(f"Failed to remove role from user {user_id}: {reason}")
            log.warning(f"Bulk {operation.operation} failed for user {user_id}: {reason}")

    log.info(f"Bulk {operation.operation} of role {role.name}: {affected}/{len(operation.user_ids)} users")
    return summarize(operation.operation, affected, len(operation.user_ids), errors)


async def execute_bulk_operation(
    db: AsyncSession,
    operation: BulkUserOperation,
    grantor: GrantorContext,
) -> BulkOperationResult:
    """
    Apply one operation to every user in ``operation.user_ids``.

    For role operations ``affected_count + len(errors)`` always equals the number of
    (de-duplicated) user ids.

    Raises:
        ValidationError: role operation without a role id
        RoleNotFound: the role does not exist
        PrivilegeEscalation: the grantor may not grant this role in this organization
    """
    if operation.operation in ("assign_role", "remove_role"):
        return await _apply_role_change(db, operation, grantor)
    return await _apply_status_change(db, operation)
