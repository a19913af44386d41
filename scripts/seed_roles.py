"""
Seed script to populate the system roles.

Run this script after database initialization to create:
- super_admin, admin, manager and employee (marked as system roles)

Existing roles are left as they are.

Usage:
    uv run python -m scripts.seed_roles
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.roles.models import Role
from app.utils import get_logger


log = get_logger(__name__)


SYSTEM_ROLES = {
    config.SUPER_ADMIN_ROLE_NAME: {
        "description": "Platform administrator with access to every organization",
        "permissions": ["*"],
    },
    config.ADMIN_ROLE_NAME: {
        "description": "Administrator of one or more organizations",
        "permissions": [
            "users:create", "users:read", "users:update", "users:delete", "users:manage_roles",
            "organizations:read", "organizations:update",
            "roles:read",
            "cycles:manage", "feedback:read", "analytics:read",
        ],
    },
    "manager": {
        "description": "People manager giving and reviewing feedback for direct reports",
        "permissions": [
            "users:read",
            "cycles:read", "feedback:create", "feedback:read", "feedback:review",
            "analytics:read",
        ],
    },
    "employee": {
        "description": "Employee participating in feedback cycles",
        "permissions": ["cycles:read", "feedback:create", "feedback:read"],
    },
}


async def seed_roles(db: AsyncSession) -> list[str]:
    """
    Create missing system roles.

    Returns:
        Names of the roles that were created
    """
    log.info("Creating system roles...")
    created = []

    for role_name, role_config in SYSTEM_ROLES.items():
        result = await db.execute(select(Role).where(Role.name == role_name))
        if result.scalars().first():
            log.debug(f"Role '{role_name}' already exists, skipping")
            continue

        db.add(Role(
            name=role_name,
            description=role_config["description"],
            permissions=role_config["permissions"],
            is_system_role=True,
        ))
        created.append(role_name)
        log.info(f"Created role '{role_name}' with {len(role_config['permissions'])} permissions")

    await db.flush()
    return created


async def main():
    """Main function to seed system roles."""
    log.info("Starting role seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            created = await seed_roles(db)
            await db.commit()
        except Exception as e:
            log.error(f"Error seeding roles: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info(f"Role seeding completed, {len(created)} role(s) created")


if __name__ == "__main__":
    asyncio.run(main())
