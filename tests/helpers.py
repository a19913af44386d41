from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.roles.models import RoleAssignment
from app.features.users.auth import create_access_token
from app.features.users.models import User


async def make_user(db: AsyncSession, email: str, organization_id: str | None = None) -> User:
    user = User(email=email, name=email.split("@")[0], organization_id=organization_id)
    db.add(user)
    await db.flush()
    return user


async def count_assignments(db: AsyncSession, **filters) -> int:
    stmt = select(func.count(RoleAssignment.id))
    for key, value in filters.items():
        column = getattr(RoleAssignment, key)
        stmt = stmt.where(column.is_(None) if value is None else column == value)
    return await db.scalar(stmt)


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
