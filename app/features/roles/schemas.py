"""
Pydantic schemas for role management.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import Field, field_validator

from app.core.schemas import CamelModel


def _check_role_name(v: str) -> str:
    if not v.replace('_', '').replace('-', '').isalnum():
        raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
    return v


class RoleBase(CamelModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    permissions: List[str] = Field(default_factory=list, description="Permission strings, e.g. 'users:read'")


class RoleCreate(RoleBase):
    """Schema for creating a custom role."""

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        return _check_role_name(v)


class RoleUpdate(CamelModel):
    """Schema for updating a custom role. Omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[str]] = None

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: Optional[str]) -> Optional[str]:
        return _check_role_name(v) if v is not None else v


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    is_system_role: bool
    created_at: datetime
    updated_at: datetime
