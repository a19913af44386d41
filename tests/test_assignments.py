"""Role assignment store: insert-or-reactivate, soft revoke, natural key with NULL scope."""
import pytest
from sqlalchemy import select

from app.features.roles.assignments import (
    Active,
    Revoked,
    assign_role,
    assignment_state,
    find_assignment,
    get_active_assignments,
    revoke_role,
)
from app.features.roles.models import AuditLog, RoleAssignment
from tests.helpers import count_assignments, make_user

pytestmark = pytest.mark.asyncio


async def test_assign_inserts_active_assignment(db, seed):
    user = await make_user(db, "ann@example.com")

    assignment, changed = await assign_role(db, user.id, seed.role_ids["employee"], seed.org_a_id, "root")

    assert changed
    state = assignment_state(assignment)
    assert isinstance(state, Active)
    assert state.granted_by == "root"
    assert assignment.organization_id == seed.org_a_id


async def test_assign_existing_active_assignment_writes_nothing(db, seed, write_log):
    user = await make_user(db, "ann@example.com")
    first, _ = await assign_role(db, user.id, seed.role_ids["employee"], None, "root")
    granted_at = first.granted_at
    write_log.clear()

    second, changed = await assign_role(db, user.id, seed.role_ids["employee"], None, "someone-else")

    assert not changed
    assert second is first
    assert write_log == []
    assert assignment_state(second) == Active(granted_at=granted_at, granted_by="root")


async def test_null_scope_is_its_own_natural_key(db, seed):
    user = await make_user(db, "ann@example.com")
    role_id = seed.role_ids["manager"]

    await assign_role(db, user.id, role_id, None, "root")
    await assign_role(db, user.id, role_id, seed.org_a_id, "root")
    await assign_role(db, user.id, role_id, None, "root")

    assert await count_assignments(db, user_id=user.id) == 2
    global_row = await find_assignment(db, user.id, role_id, None)
    assert global_row.organization_id is None


async def test_revoke_is_soft_and_reassign_reactivates(db, seed):
    user = await make_user(db, "ann@example.com")
    role_id = seed.role_ids["employee"]
    original, _ = await assign_role(db, user.id, role_id, seed.org_a_id, "root")

    assert await revoke_role(db, user.id, role_id, seed.org_a_id, revoked_by="root")
    state = assignment_state(original)
    assert isinstance(state, Revoked)
    assert state.revoked_at is not None
    assert await get_active_assignments(db, user.id) == []

    # revoking again is a no-op
    assert not await revoke_role(db, user.id, role_id, seed.org_a_id)

    reactivated, changed = await assign_role(db, user.id, role_id, seed.org_a_id, "admin-2")
    assert changed
    assert reactivated.id == original.id
    assert reactivated.revoked_at is None
    assert assignment_state(reactivated).granted_by == "admin-2"
    assert await count_assignments(db, user_id=user.id) == 1


async def test_grants_and_revocations_are_audited(db, seed):
    user = await make_user(db, "ann@example.com")
    role_id = seed.role_ids["employee"]

    await assign_role(db, user.id, role_id, seed.org_a_id, seed.super_admin_id)
    await revoke_role(db, user.id, role_id, seed.org_a_id, revoked_by=seed.super_admin_id)

    result = await db.execute(
        select(AuditLog).where(AuditLog.resource_id == user.id).order_by(AuditLog.created_at, AuditLog.action)
    )
    actions = sorted(entry.action for entry in result.scalars())
    assert actions == ["assign_role", "remove_role"]


async def test_active_assignments_filters(db, seed):
    user = await make_user(db, "ann@example.com")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_a_id, "root")
    await assign_role(db, user.id, seed.role_ids["admin"], seed.org_b_id, "root")
    await assign_role(db, user.id, seed.role_ids["employee"], None, "root")

    admin_rows = await get_active_assignments(db, user.id, role_id=seed.role_ids["admin"])
    assert {a.organization_id for a in admin_rows} == {seed.org_a_id, seed.org_b_id}

    others = await get_active_assignments(db, user.id, exclude_role_ids=[seed.role_ids["admin"]])
    assert [(a.role.name, a.organization_id) for a in others] == [("employee", None)]
    assert all(isinstance(a, RoleAssignment) for a in others)
