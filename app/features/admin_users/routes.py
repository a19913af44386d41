"""
Admin user management API routes.

Domain errors (privilege escalation, duplicate email, ...) are raised by the service
and turned into responses by the AdminUserError handler in app.core.errors.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.admin_users import service
from app.features.admin_users.privileges import GrantorContext
from app.features.admin_users.schemas import (
    AssignRoleRequest,
    BulkOperationResult,
    BulkUserOperation,
    UserCreate,
    UserFilters,
    UserImportRequest,
    UserImportResult,
    UserListResponse,
    UserResponse,
    UserRoleResponse,
    UserStats,
    UserUpdate,
)
from app.features.users.dependencies import require_admin_grantor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _user_response(db: AsyncSession, user) -> UserResponse:
    return UserResponse.from_user(user, await service.get_user_roles(db, user.id))


@router.get("", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    organization_id: Optional[str] = Query(None, alias="organizationId"),
    role_id: Optional[str] = Query(None, alias="roleId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """List users with their active roles."""
    filters = UserFilters(search=search, is_active=is_active, organization_id=organization_id, role_id=role_id)
    page, total = await service.list_users(db, filters, limit=limit, offset=offset)
    return UserListResponse(
        users=[UserResponse.from_user(user, assignments) for user, assignments in page],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=UserStats)
async def get_user_stats(
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """User counts by status, role, organization and department."""
    return await service.get_user_stats(db)


@router.get("/export", response_model=List[UserResponse])
async def export_users(
    search: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    organization_id: Optional[str] = Query(None, alias="organizationId"),
    role_id: Optional[str] = Query(None, alias="roleId"),
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Every user matching the filters, with roles, without pagination."""
    filters = UserFilters(search=search, is_active=is_active, organization_id=organization_id, role_id=role_id)
    return [UserResponse.from_user(user, assignments) for user, assignments in await service.export_users(db, filters)]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Create a user with roles."""
    user = await service.create_user(db, data, grantor)
    return await _user_response(db, user)


@router.post("/bulk", response_model=BulkOperationResult)
async def bulk_update_users(
    operation: BulkUserOperation,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Apply one operation to many users; per-user failures are reported, not raised."""
    return await service.bulk_update_users(db, operation, grantor)


@router.post("/import", response_model=UserImportResult)
async def import_users(
    payload: UserImportRequest,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Import users from JSON rows."""
    return await service.import_users(db, payload.users, grantor)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Get a specific user by ID."""
    user = await service.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return await _user_response(db, user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Update a user, its roles and the organizations it administers."""
    user = await service.update_user(db, user_id, data, grantor)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return await _user_response(db, user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Delete a user and its role assignments."""
    if not await service.delete_user(db, user_id):
        raise HTTPException(status_code=404, detail="User not found")


@router.get("/{user_id}/roles", response_model=List[UserRoleResponse])
async def get_user_roles(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """List a user's active role assignments."""
    if await service.get_user_by_id(db, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return [UserRoleResponse.from_assignment(a) for a in await service.get_user_roles(db, user_id)]


@router.post("/{user_id}/roles", response_model=UserRoleResponse, status_code=status.HTTP_201_CREATED)
async def assign_user_role(
    user_id: str,
    data: AssignRoleRequest,
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Grant a role to a user, optionally scoped to an organization."""
    assignment = await service.assign_user_role(db, user_id, data.role_id, data.organization_id, grantor)
    return UserRoleResponse.from_assignment(assignment)


@router.delete("/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user_role(
    user_id: str,
    role_id: str,
    organization_id: Optional[str] = Query(None, alias="organizationId"),
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """Revoke a role from a user in one scope (global when organizationId is omitted)."""
    if not await service.remove_user_role(db, user_id, role_id, organization_id, grantor):
        raise HTTPException(status_code=404, detail="Role assignment not found")
