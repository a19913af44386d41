"""
User import pipeline.

Each row is validated, its organization reference resolved, and handed to
service.create_user inside its own SAVEPOINT. A failing row is rolled back alone and
reported with the row data; the batch always runs to the end.
"""
from typing import Any
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.admin_users.exceptions import AdminUserError, OrganizationNotFound, ValidationError
from app.features.admin_users.privileges import GrantorContext
from app.features.admin_users.schemas import UserCreate, UserImportError, UserImportResult, UserImportRow
from app.features.admin_users.service import create_user
from app.features.organizations.dependencies import (
    get_organization_by_id,
    get_organization_by_name_and_slug,
    get_organizations_by_name,
)
from app.utils import get_logger


log = get_logger(__name__)


async def resolve_organization_id(db: AsyncSession, row: UserImportRow) -> str | None:
    """
    Resolve the row's organization reference to an organization id.

    Priority: organization_id, then name + slug, then name alone (must match exactly
    one organization). Returns None when the row names no organization.
    """
    if row.organization_id:
        if await get_organization_by_id(db, row.organization_id) is None:
            raise OrganizationNotFound(f'Organization with id "{row.organization_id}" not found')
        return row.organization_id

    if row.organization_name and row.organization_slug:
        organization = await get_organization_by_name_and_slug(db, row.organization_name, row.organization_slug)
        if organization is None:
            raise OrganizationNotFound(
                f'Organization "{row.organization_name}" with slug "{row.organization_slug}" not found'
            )
        return organization.id

    if row.organization_name:
        matches = await get_organizations_by_name(db, row.organization_name)
        if not matches:
            raise OrganizationNotFound(f'Organization "{row.organization_name}" not found')
        if len(matches) > 1:
            slugs = ", ".join(o.slug for o in matches)
            raise ValidationError(
                f'Organization name "{row.organization_name}" is ambiguous '
                f"(slugs: {slugs}); provide organizationSlug"
            )
        return matches[0].id

    return None


def _describe(e: SchemaValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
    )


async def _import_row(db: AsyncSession, raw: dict[str, Any], grantor: GrantorContext) -> None:
    row = UserImportRow.model_validate(raw)
    organization_id = await resolve_organization_id(db, row)
    data = UserCreate(
        email=row.email,
        name=row.name,
        department=row.department,
        position=row.position,
        organization_id=organization_id,
        roles=row.roles,
        admin_organization_ids=row.admin_organization_ids,
    )
    await create_user(db, data, grantor, strict_roles=True)


async def import_users(
    db: AsyncSession,
    rows: list[dict[str, Any]],
    grantor: GrantorContext,
) -> UserImportResult:
    """
    Import users row by row.

    ``total_processed == total_success + total_errors == len(rows)`` always holds.
    Store errors other than integrity violations propagate.
    """
    result = UserImportResult(total_processed=len(rows))

    for index, raw in enumerate(rows, start=1):
        try:
            async with db.begin_nested():
                await _import_row(db, raw, grantor)
        except AdminUserError as e:
            error = e.message
        except SchemaValidationError as e:
            error = _describe(e)
        except IntegrityError as e:
            error = f"Database constraint violated: {e.orig}"
        else:
            result.success.append(raw)
            result.total_success += 1
            continue

        log.warning(f"Import row {index} failed: {error}")
        result.errors.append(UserImportError(data=raw, error=error))
        result.total_errors += 1

    log.info(
        f"User import completed: {result.total_processed} processed, "
        f"{result.total_success} imported, {result.total_errors} failed"
    )
    return result
