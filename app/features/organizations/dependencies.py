"""
Organization lookups used by the admin user service and import.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Organization


async def get_organization_by_id(db: AsyncSession, organization_id: str) -> Organization | None:
    result = await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )
    return result.scalar_one_or_none()


async def get_organization_by_name_and_slug(db: AsyncSession, name: str, slug: str) -> Organization | None:
    """
    Find the organization with this name and slug.

    Names are not unique, slugs are; the pair identifies at most one organization.
    """
    result = await db.execute(
        select(Organization).where(Organization.name == name, Organization.slug == slug)
    )
    return result.scalar_one_or_none()


async def get_organizations_by_name(db: AsyncSession, name: str) -> list[Organization]:
    """All organizations carrying this name (there may be several)."""
    result = await db.execute(
        select(Organization).where(Organization.name == name).order_by(Organization.slug)
    )
    return list(result.scalars().all())


async def get_missing_organization_ids(db: AsyncSession, organization_ids: list[str]) -> list[str]:
    """Return the ids from ``organization_ids`` that match no organization, in input order."""
    if not organization_ids:
        return []
    result = await db.execute(
        select(Organization.id).where(Organization.id.in_(organization_ids))
    )
    found = set(result.scalars().all())
    return [org_id for org_id in organization_ids if org_id not in found]
