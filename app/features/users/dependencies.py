"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.admin_users.privileges import GrantorContext
from app.features.roles.assignments import get_active_role_names
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token


security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Verifies the JWT signature and expiry
    3. Looks up the user by the token's ``sub``
    4. Updates last_login_at timestamp
    """
    payload = verify_jwt_token(credentials.credentials)
    user_id = payload.get("sub")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    user.last_login_at = datetime.now(timezone.utc)
    return user


async def get_grantor_context(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> GrantorContext:
    """
    Build the caller's GrantorContext from its active role assignments.
    """
    assignments = await get_active_role_names(db, user.id)
    return GrantorContext(
        id=user.id,
        is_super_admin=any(name == config.SUPER_ADMIN_ROLE_NAME for name, _ in assignments),
        admin_organization_ids=frozenset(
            org_id for name, org_id in assignments
            if name == config.ADMIN_ROLE_NAME and org_id is not None
        ),
        roles=tuple(dict.fromkeys(name for name, _ in assignments)),
    )


async def require_admin_grantor(
    grantor: Annotated[GrantorContext, Depends(get_grantor_context)]
) -> GrantorContext:
    """
    Require super admin or organization admin privileges.

    Usage:
        @router.post("")
        async def create_user(grantor: GrantorContext = Depends(require_admin_grantor)):
            ...
    """
    if not grantor.is_super_admin and not grantor.admin_organization_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return grantor


async def require_super_admin(
    grantor: Annotated[GrantorContext, Depends(get_grantor_context)]
) -> GrantorContext:
    """Require the super admin role (role catalogue changes)."""
    if not grantor.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin privileges required",
        )
    return grantor


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
