"""Admin user service: create/update/assign with privilege checks."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from app.features.admin_users import service
from app.features.admin_users.exceptions import (
    DuplicateEmail,
    OrganizationNotFound,
    PrivilegeEscalation,
    RoleNotFound,
    UserNotFound,
    ValidationError,
)
from app.features.admin_users.schemas import UserCreate, UserFilters, UserRoleResponse, UserUpdate
from app.features.roles.assignments import assign_role, get_active_assignments
from app.features.users.models import User
from tests.helpers import count_assignments, make_user

pytestmark = pytest.mark.asyncio


async def _roles(db, user_id) -> set:
    return {(a.role.name, a.organization_id) for a in await get_active_assignments(db, user_id)}


async def test_create_user_with_roles(db, seed, super_grantor):
    data = UserCreate(
        email="Ann@Example.com",
        name="Ann",
        organization_id=seed.org_a_id,
        roles=["employee", "admin"],
        admin_organization_ids=[seed.org_a_id, seed.org_b_id],
    )

    user = await service.create_user(db, data, super_grantor)

    assert user.email == "ann@example.com"
    assert user.created_at is not None
    assert await _roles(db, user.id) == {
        ("employee", seed.org_a_id),
        ("admin", seed.org_a_id),
        ("admin", seed.org_b_id),
    }


async def test_admin_defaults_to_primary_organization(db, seed, org_a_grantor):
    data = UserCreate(email="lead@example.com", name="Lead", organization_id=seed.org_a_id, roles=["admin"])

    user = await service.create_user(db, data, org_a_grantor)

    assert await _roles(db, user.id) == {("admin", seed.org_a_id)}


async def test_admin_without_organization_is_rejected(db, seed, super_grantor):
    data = UserCreate(email="lead@example.com", name="Lead", roles=["admin"])

    with pytest.raises(ValidationError, match="Admin role requires at least one organization"):
        await service.create_user(db, data, super_grantor)


async def test_escalation_writes_nothing(db, seed, org_a_grantor):
    assignments_before = await count_assignments(db)
    data = UserCreate(
        email="sneaky@example.com",
        name="Sneaky",
        roles=["admin"],
        admin_organization_ids=[seed.org_a_id, seed.org_b_id],
    )

    with pytest.raises(PrivilegeEscalation) as exc:
        await service.create_user(db, data, org_a_grantor)

    assert exc.value.unauthorized_org_ids == [seed.org_b_id]
    assert seed.org_b_id in exc.value.message
    assert await count_assignments(db) == assignments_before
    assert await count_assignments(db, organization_id=seed.org_a_id, role_id=seed.role_ids["admin"]) == 1
    assert await db.scalar(select(func.count(User.id)).where(User.email == "sneaky@example.com")) == 0


async def test_only_super_admin_creates_super_admins(db, seed, org_a_grantor):
    data = UserCreate(email="boss@example.com", name="Boss", roles=["super_admin"])

    with pytest.raises(PrivilegeEscalation):
        await service.create_user(db, data, org_a_grantor)


async def test_duplicate_email(db, seed, super_grantor):
    data = UserCreate(email="root@example.com", name="Another Root")

    with pytest.raises(DuplicateEmail):
        await service.create_user(db, data, super_grantor)


async def test_unknown_role_is_skipped_unless_strict(db, seed, super_grantor):
    user = await service.create_user(
        db, UserCreate(email="ann@example.com", name="Ann", roles=["employee", "astronaut"]), super_grantor
    )
    assert await _roles(db, user.id) == {("employee", None)}

    with pytest.raises(RoleNotFound):
        await service.create_user(
            db, UserCreate(email="bob@example.com", name="Bob", roles=["astronaut"]), super_grantor, strict_roles=True
        )


async def test_unknown_primary_organization(db, seed, super_grantor):
    data = UserCreate(email="ann@example.com", name="Ann", organization_id="missing-org", roles=["employee"])

    with pytest.raises(OrganizationNotFound):
        await service.create_user(db, data, super_grantor)


async def test_update_adds_admin_org_and_keeps_manager_scope(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["manager"], seed.org_a_id, "root")

    await service.update_user(
        db, user.id, UserUpdate(roles=["manager", "admin"], admin_organization_ids=[seed.org_b_id]), super_grantor
    )

    assert await _roles(db, user.id) == {("manager", seed.org_a_id), ("admin", seed.org_b_id)}


async def test_update_escalation_leaves_roles_untouched(db, seed, org_a_grantor):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["employee"], seed.org_a_id, "root")

    with pytest.raises(PrivilegeEscalation):
        await service.update_user(
            db,
            user.id,
            UserUpdate(name="Renamed", roles=["manager", "admin"], admin_organization_ids=[seed.org_a_id, seed.org_c_id]),
            org_a_grantor,
        )

    assert user.name == "ann"
    assert await _roles(db, user.id) == {("employee", seed.org_a_id)}


async def test_update_roles_without_admin_revokes_admin(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_a_id, "root")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_b_id, "root")

    await service.update_user(db, user.id, UserUpdate(roles=["employee"]), super_grantor)

    assert await _roles(db, user.id) == {("employee", None)}


async def test_update_roles_with_admin_keeps_current_admin_orgs(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_b_id, "root")

    await service.update_user(db, user.id, UserUpdate(roles=["admin", "manager"]), super_grantor)

    assert await _roles(db, user.id) == {("admin", seed.org_b_id), ("manager", None)}


async def test_update_roles_with_admin_needs_an_organization(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")

    with pytest.raises(ValidationError):
        await service.update_user(db, user.id, UserUpdate(roles=["admin"]), super_grantor)


async def test_update_admin_organizations_only(db, seed, org_a_grantor):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["employee"], None, "root")

    await service.update_user(db, user.id, UserUpdate(admin_organization_ids=[seed.org_a_id]), org_a_grantor)
    assert await _roles(db, user.id) == {("employee", None), ("admin", seed.org_a_id)}

    await service.update_user(db, user.id, UserUpdate(admin_organization_ids=[]), org_a_grantor)
    assert await _roles(db, user.id) == {("employee", None)}


async def test_update_profile_fields(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")

    updated = await service.update_user(
        db, user.id, UserUpdate(name="Ann Smith", department="Sales", email="ann.smith@example.com"), super_grantor
    )

    assert updated.name == "Ann Smith"
    assert updated.department == "Sales"
    assert updated.email == "ann.smith@example.com"


async def test_update_to_taken_email(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")

    with pytest.raises(DuplicateEmail):
        await service.update_user(db, user.id, UserUpdate(email="root@example.com"), super_grantor)


async def test_update_missing_user(db, seed, super_grantor):
    assert await service.update_user(db, "nope", UserUpdate(name="x"), super_grantor) is None


async def test_assign_and_remove_user_role(db, seed, org_a_grantor):
    user = await make_user(db, "ann@example.com")
    manager_id = seed.role_ids["manager"]

    assignment = await service.assign_user_role(db, user.id, manager_id, seed.org_a_id, org_a_grantor)
    assert assignment.role.name == "manager"
    assert assignment.granted_by == org_a_grantor.id

    assert await service.remove_user_role(db, user.id, manager_id, seed.org_a_id, org_a_grantor)
    assert not await service.remove_user_role(db, user.id, manager_id, seed.org_a_id, org_a_grantor)


async def test_assign_admin_outside_scope(db, seed, org_a_grantor):
    user = await make_user(db, "ann@example.com")

    with pytest.raises(PrivilegeEscalation):
        await service.assign_user_role(db, user.id, seed.role_ids["admin"], seed.org_b_id, org_a_grantor)
    with pytest.raises(ValidationError):
        await service.assign_user_role(db, user.id, seed.role_ids["admin"], None, org_a_grantor)


async def test_assign_to_missing_user_or_role(db, seed, super_grantor):
    user = await make_user(db, "ann@example.com")

    with pytest.raises(UserNotFound):
        await service.assign_user_role(db, "nope", seed.role_ids["employee"], None, super_grantor)
    with pytest.raises(RoleNotFound):
        await service.assign_user_role(db, user.id, "no-such-role", None, super_grantor)


async def test_list_users_by_role_keeps_sibling_roles(db, seed):
    ann = await make_user(db, "ann@example.com")
    bob = await make_user(db, "bob@example.com")
    await assign_role(db, ann.id, seed.role_ids["manager"], seed.org_a_id, "root")
    await assign_role(db, ann.id, seed.role_ids["employee"], None, "root")
    await assign_role(db, bob.id, seed.role_ids["employee"], None, "root")

    page, total = await service.list_users(db, UserFilters(role_id=seed.role_ids["manager"]))

    assert total == 1
    [(user, assignments)] = page
    assert user.id == ann.id
    assert {a.role.name for a in assignments} == {"manager", "employee"}


async def test_list_users_filters(db, seed):
    ann = await make_user(db, "ann@example.com")
    bob = await make_user(db, "bob@example.com")
    bob.is_active = False
    await assign_role(db, ann.id, seed.role_ids["employee"], seed.org_b_id, "root")
    await db.flush()

    page, _ = await service.list_users(db, UserFilters(search="ANN"))
    assert [u.id for u, _ in page] == [ann.id]

    page, _ = await service.list_users(db, UserFilters(is_active=False))
    assert [u.id for u, _ in page] == [bob.id]

    page, _ = await service.list_users(db, UserFilters(organization_id=seed.org_b_id))
    assert [u.id for u, _ in page] == [ann.id]


async def test_delete_user_removes_assignments(db, seed):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["employee"], None, "root")

    assert await service.delete_user(db, user.id)

    assert await service.get_user_by_id(db, user.id) is None
    assert await count_assignments(db, user_id=user.id) == 0
    assert not await service.delete_user(db, user.id)


async def test_org_admin_cannot_demote_super_admin(db, seed, org_a_grantor, super_grantor):
    with pytest.raises(PrivilegeEscalation):
        await service.remove_user_role(db, seed.super_admin_id, seed.role_ids["super_admin"], None, org_a_grantor)
    with pytest.raises(PrivilegeEscalation):
        await service.update_user(db, seed.super_admin_id, UserUpdate(roles=["employee"]), org_a_grantor)

    assert await _roles(db, seed.super_admin_id) == {("super_admin", None)}

    await service.update_user(db, seed.super_admin_id, UserUpdate(roles=["employee"]), super_grantor)
    assert await _roles(db, seed.super_admin_id) == {("employee", None)}


async def test_org_admin_cannot_revoke_admin_elsewhere(db, seed, org_a_grantor, write_log):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_a_id, "root")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_b_id, "root")
    write_log.clear()

    with pytest.raises(PrivilegeEscalation) as exc:
        await service.update_user(db, user.id, UserUpdate(admin_organization_ids=[seed.org_a_id]), org_a_grantor)
    assert exc.value.unauthorized_org_ids == [seed.org_b_id]

    with pytest.raises(PrivilegeEscalation):
        await service.update_user(db, user.id, UserUpdate(name="Renamed", roles=["employee"]), org_a_grantor)

    assert write_log == []
    assert user.name == "ann"
    assert await _roles(db, user.id) == {("admin", seed.org_a_id), ("admin", seed.org_b_id)}


async def test_search_matches_wildcards_literally(db, seed):
    underscored = await make_user(db, "a_b@example.com")
    await make_user(db, "axb@example.com")

    page, total = await service.list_users(db, UserFilters(search="a_b"))
    assert total == 1
    assert [u.id for u, _ in page] == [underscored.id]

    page, total = await service.list_users(db, UserFilters(search="%"))
    assert total == 0


async def test_export_returns_every_match(db, seed):
    employee_id = seed.role_ids["employee"]
    for name in ("ann", "bob", "cid"):
        user = await make_user(db, f"{name}@example.com")
        await assign_role(db, user.id, employee_id, None, "root")

    page, total = await service.list_users(db, UserFilters(role_id=employee_id), limit=1)
    assert (len(page), total) == (1, 3)

    exported = await service.export_users(db, UserFilters(role_id=employee_id))
    assert {user.email for user, _ in exported} == {"ann@example.com", "bob@example.com", "cid@example.com"}
    assert all([a.role.name for a in assignments] == ["employee"] for _, assignments in exported)


async def test_user_stats(db, seed):
    ann = await make_user(db, "ann@example.com", organization_id=seed.org_a_id)
    bob = await make_user(db, "bob@example.com")
    ann.department = "Sales"
    ann.is_active = False
    bob.department = "Sales"
    bob.email_verified = True
    await assign_role(db, ann.id, seed.role_ids["employee"], seed.org_a_id, "root")
    await db.flush()

    stats = await service.get_user_stats(db)

    assert (stats.total_users, stats.active_users, stats.inactive_users) == (4, 3, 1)
    assert (stats.verified_users, stats.unverified_users) == (1, 3)
    assert stats.recent_signups == 4
    assert stats.users_by_role == {"admin": 1, "employee": 1, "manager": 0, "super_admin": 1}
    assert stats.users_by_organization == {"engineering-eu": 0, "engineering-us": 0, "org-a": 1}
    assert stats.users_by_department == {"Sales": 2}
    assert stats.average_users_per_organization == 0.33


async def test_role_response_carries_expiry(db, seed):
    user = await make_user(db, "ann@example.com")
    assignment, _ = await assign_role(db, user.id, seed.role_ids["employee"], None, "root")
    assert UserRoleResponse.from_assignment(assignment).expires_at is None

    expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)
    assignment.expires_at = expiry
    payload = UserRoleResponse.from_assignment(assignment).model_dump(by_alias=True)
    assert payload["expiresAt"] == expiry
