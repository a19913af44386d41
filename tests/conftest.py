"""
Shared fixtures.

Every test gets its own in-memory SQLite database. The seed creates the system roles,
three organizations (two of them named "Engineering"), a super admin and an admin of
org A.
"""
from dataclasses import dataclass

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.engine import enable_sqlite_savepoints, get_db, init_db
from app.features.admin_users.privileges import GrantorContext
from app.features.organizations.models import Organization
from app.features.roles.assignments import assign_role
from app.features.roles.models import Role
from app.features.users.models import User
from scripts.seed_roles import seed_roles


@dataclass(frozen=True)
class Seed:
    org_a_id: str
    org_b_id: str
    org_c_id: str
    super_admin_id: str
    org_admin_id: str
    role_ids: dict


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def seed(session_factory) -> Seed:
    async with session_factory() as session:
        await seed_roles(session)
        org_a = Organization(name="Org A", slug="org-a")
        org_b = Organization(name="Engineering", slug="engineering-eu")
        org_c = Organization(name="Engineering", slug="engineering-us")
        root = User(email="root@example.com", name="Root")
        admin_a = User(email="admin.a@example.com", name="Admin A")
        session.add_all([org_a, org_b, org_c, root, admin_a])
        await session.flush()

        role_ids = {role.name: role.id for role in (await session.execute(select(Role))).scalars()}
        await assign_role(session, root.id, role_ids["super_admin"], None, None)
        await assign_role(session, admin_a.id, role_ids["admin"], org_a.id, root.id)
        await session.commit()

        return Seed(
            org_a_id=org_a.id,
            org_b_id=org_b.id,
            org_c_id=org_c.id,
            super_admin_id=root.id,
            org_admin_id=admin_a.id,
            role_ids=role_ids,
        )


@pytest_asyncio.fixture
async def db(session_factory, seed):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def super_grantor(seed) -> GrantorContext:
    return GrantorContext(id=seed.super_admin_id, is_super_admin=True, roles=("super_admin",))


@pytest.fixture
def org_a_grantor(seed) -> GrantorContext:
    return GrantorContext(
        id=seed.org_admin_id,
        admin_organization_ids=frozenset({seed.org_a_id}),
        roles=("admin",),
    )


@pytest.fixture
def write_log(engine):
    """Record every INSERT/UPDATE/DELETE sent to the database."""
    statements: list[str] = []

    def _record(_conn, _cursor, statement, _parameters, _context, _executemany):
        if statement.lstrip().split(" ", 1)[0].upper() in ("INSERT", "UPDATE", "DELETE"):
            statements.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", _record)


@pytest_asyncio.fixture
async def client(session_factory, seed):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
