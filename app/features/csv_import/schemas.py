"""
Pydantic schemas for CSV user import.
"""
from pydantic import BaseModel


class CSVColumnMapping(BaseModel):
    """
    Expected CSV column for each import field.

    Headers match case-insensitively, and snake_case spellings of the field names are
    accepted as well. ``roles`` and ``adminOrganizationIds`` cells hold ``;``- or
    ``,``-separated lists.
    """
    # User fields
    email: str = "email"
    name: str = "name"
    department: str = "department"
    position: str = "position"

    # Organization reference (id, or name + slug, or name alone)
    organization_id: str = "organizationId"
    organization_name: str = "organizationName"
    organization_slug: str = "organizationSlug"

    # Role fields
    roles: str = "roles"
    admin_organization_ids: str = "adminOrganizationIds"
