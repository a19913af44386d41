"""
Pydantic schemas for admin user management requests and responses.
"""
from datetime import datetime
from typing import Any, Literal
from pydantic import EmailStr, Field, field_validator

from app.core.schemas import CamelModel


class UserCreate(CamelModel):
    """Schema for creating a user with roles."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    avatar_url: str | None = Field(None, max_length=500)
    organization_id: str | None = Field(None, description="Primary organization; default scope for new roles")
    department: str | None = Field(None, max_length=255)
    position: str | None = Field(None, max_length=255)
    is_active: bool = True
    email_verified: bool = False
    roles: list[str] = Field(default_factory=list, description="Role names")
    admin_organization_ids: list[str] | None = Field(
        None, description="Organizations the user administers when roles include admin"
    )


class UserUpdate(CamelModel):
    """
    Schema for updating a user.

    ``roles`` replaces the user's role list when given. ``admin_organization_ids``
    replaces the set of administered organizations when given.
    """
    email: EmailStr | None = None
    name: str | None = Field(None, min_length=1, max_length=255)
    avatar_url: str | None = Field(None, max_length=500)
    organization_id: str | None = None
    department: str | None = Field(None, max_length=255)
    position: str | None = Field(None, max_length=255)
    is_active: bool | None = None
    email_verified: bool | None = None
    roles: list[str] | None = None
    admin_organization_ids: list[str] | None = None


class UserRoleResponse(CamelModel):
    """An active role assignment of a user."""
    id: str
    role_id: str
    role_name: str
    organization_id: str | None = None
    organization_name: str | None = None
    granted_by: str | None = None
    granted_at: datetime
    expires_at: datetime | None = None
    is_active: bool

    @classmethod
    def from_assignment(cls, assignment) -> "UserRoleResponse":
        organization = assignment.organization
        return cls(
            id=assignment.id,
            role_id=assignment.role_id,
            role_name=assignment.role.name,
            organization_id=assignment.organization_id,
            organization_name=organization.name if organization is not None else None,
            granted_by=assignment.granted_by,
            granted_at=assignment.granted_at,
            expires_at=assignment.expires_at,
            is_active=assignment.is_active,
        )


class UserResponse(CamelModel):
    """Schema for user responses, including active roles."""
    id: str
    email: str
    name: str
    avatar_url: str | None = None
    is_active: bool
    email_verified: bool
    organization_id: str | None = None
    department: str | None = None
    position: str | None = None
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    roles: list[UserRoleResponse] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user, assignments=()) -> "UserResponse":
        response = cls.model_validate(user)
        response.roles = [UserRoleResponse.from_assignment(a) for a in assignments]
        return response


class UserListResponse(CamelModel):
    users: list[UserResponse]
    total: int
    limit: int
    offset: int


class UserFilters(CamelModel):
    search: str | None = None
    is_active: bool | None = None
    organization_id: str | None = None
    role_id: str | None = None


class UserStats(CamelModel):
    """Platform-wide user counts for the admin dashboard."""
    total_users: int
    active_users: int
    inactive_users: int
    verified_users: int
    unverified_users: int
    # created in the last 30 days
    recent_signups: int
    users_by_role: dict[str, int]
    # keyed by organization slug
    users_by_organization: dict[str, int]
    users_by_department: dict[str, int]
    average_users_per_organization: float


class AssignRoleRequest(CamelModel):
    role_id: str
    organization_id: str | None = None


BulkOperationKind = Literal["activate", "deactivate", "delete", "assign_role", "remove_role"]


class BulkUserOperation(CamelModel):
    """One operation applied to many users."""
    operation: BulkOperationKind
    user_ids: list[str] = Field(..., min_length=1)
    role_id: str | None = None
    organization_id: str | None = None

    @field_validator("user_ids")
    @classmethod
    def dedupe_user_ids(cls, v: list[str]) -> list[str]:
        """Drop repeated ids, keeping the first occurrence."""
        return list(dict.fromkeys(v))


class BulkOperationResult(CamelModel):
    success: bool
    affected_count: int
    message: str
    errors: list[str] = Field(default_factory=list)


class UserImportRow(CamelModel):
    """
    One user to import.

    The organization is identified by ``organization_id``, or by name and slug, or by
    name alone when it is unambiguous.
    """
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    department: str | None = Field(None, max_length=255)
    position: str | None = Field(None, max_length=255)
    organization_id: str | None = None
    organization_name: str | None = None
    organization_slug: str | None = None
    roles: list[str] = Field(default_factory=list)
    admin_organization_ids: list[str] | None = None


class UserImportRequest(CamelModel):
    users: list[dict[str, Any]]


class UserImportError(CamelModel):
    data: dict[str, Any]
    error: str


class UserImportResult(CamelModel):
    success: list[dict[str, Any]] = Field(default_factory=list, description="Rows imported")
    errors: list[UserImportError] = Field(default_factory=list)
    total_processed: int = 0
    total_success: int = 0
    total_errors: int = 0
