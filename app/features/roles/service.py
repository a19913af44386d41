"""
Role catalogue operations.

System roles are seeded by scripts/seed_roles.py and are read-only here. Custom roles
can be created, edited and deleted as long as nothing references them.
"""
from typing import Iterable
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.admin_users.exceptions import (
    RoleInUse,
    RoleNotFound,
    SystemRoleProtected,
    ValidationError,
)
from app.features.roles.models import Role, RoleAssignment
from app.features.roles.schemas import RoleCreate, RoleUpdate
from app.utils import get_logger


log = get_logger(__name__)


async def get_role_by_id(db: AsyncSession, role_id: str) -> Role | None:
    result = await db.execute(select(Role).where(Role.id == role_id))
    return result.scalar_one_or_none()


async def get_role_by_name(db: AsyncSession, name: str) -> Role | None:
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalar_one_or_none()


async def get_roles_by_names(db: AsyncSession, names: Iterable[str]) -> dict[str, Role]:
    """Map each existing role name to its Role; unknown names are absent."""
    names = list(names)
    if not names:
        return {}
    result = await db.execute(select(Role).where(Role.name.in_(names)))
    return {role.name: role for role in result.scalars().all()}


async def list_roles(db: AsyncSession) -> list[Role]:
    """System roles first, then custom roles, each group by name."""
    result = await db.execute(
        select(Role).order_by(Role.is_system_role.desc(), Role.name)
    )
    return list(result.scalars().all())


async def count_active_assignments(db: AsyncSession, role_id: str) -> int:
    result = await db.execute(
        select(func.count(RoleAssignment.id)).where(
            RoleAssignment.role_id == role_id,
            RoleAssignment.is_active.is_(True),
        )
    )
    return result.scalar_one()


async def create_role(db: AsyncSession, data: RoleCreate) -> Role:
    """Create a custom (non-system) role."""
    if await get_role_by_name(db, data.name) is not None:
        raise ValidationError(f"Role with name {data.name} already exists")

    role = Role(
        name=data.name,
        description=data.description,
        permissions=list(data.permissions),
        is_system_role=False,
    )
    db.add(role)
    await db.flush()
    await db.refresh(role)
    log.info(f"Created role {role.name} ({role.id})")
    return role


async def update_role(db: AsyncSession, role_id: str, data: RoleUpdate) -> Role:
    role = await get_role_by_id(db, role_id)
    if role is None:
        raise RoleNotFound(f"Role {role_id} not found")
    if role.is_system_role:
        raise SystemRoleProtected(f"System role {role.name} cannot be modified")

    updates = data.model_dump(exclude_unset=True)
    new_name = updates.get("name")
    if new_name and new_name != role.name:
        if await get_role_by_name(db, new_name) is not None:
            raise ValidationError(f"Role with name {new_name} already exists")

    for key, value in updates.items():
        if value is not None:
            setattr(role, key, value)
    await db.flush()
    await db.refresh(role)
    return role


async def delete_role(db: AsyncSession, role_id: str) -> None:
    """
    Delete a custom role.

    Raises:
        RoleNotFound: no such role
        SystemRoleProtected: the role is a system role
        RoleInUse: active assignments still reference the role
    """
    role = await get_role_by_id(db, role_id)
    if role is None:
        raise RoleNotFound(f"Role {role_id} not found")
    if role.is_system_role:
        raise SystemRoleProtected(f"System role {role.name} cannot be deleted")

    in_use = await count_active_assignments(db, role_id)
    if in_use:
        raise RoleInUse(f"Role {role.name} is assigned to {in_use} user(s) and cannot be deleted")

    await db.delete(role)
    await db.flush()
    log.info(f"Deleted role {role.name} ({role_id})")
