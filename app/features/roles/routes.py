"""
Role catalogue API routes.

Any admin can read roles; only super admins can change the catalogue.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.admin_users.privileges import GrantorContext
from app.features.roles import service
from app.features.roles.schemas import RoleCreate, RoleResponse, RoleUpdate
from app.features.users.dependencies import require_admin_grantor, require_super_admin


router = APIRouter()


@router.get("", response_model=List[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """List system roles, then custom roles."""
    return await service.list_roles(db)


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Get a specific role by ID."""
    role = await service.get_role_by_id(db, role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_super_admin)
):
    """Create a custom role (super admin only)."""
    return await service.create_role(db, data)


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    data: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_super_admin)
):
    """Update a custom role (super admin only)."""
    return await service.update_role(db, role_id, data)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_super_admin)
):
    """Delete a custom role that no active assignment references (super admin only)."""
    await service.delete_role(db, role_id)
