import os
from decimal import Decimal
from typing import AsyncGenerator, Dict

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.models import User
from app.auth.security import access_token_claims, create_access_token, hash_password
from app.core.models import Module, SubscriptionPlan, Tenant
from app.db.session import Base, engine_options, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_PASSWORD = "StrongPass123"

# key -> (price, required deps, conflicts, is_core)
CATALOG = {
    "core": ("0", [], [], True),
    "crm": ("29", ["core"], [], False),
    "analytics": ("49", ["crm"], [], False),
    "legacy_ui": ("0", ["core"], ["modern_ui"], False),
    "modern_ui": ("10", ["core"], ["legacy_ui"], False),
}


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; overrides the FastAPI session dependency."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, future=True, **engine_options(TEST_DATABASE_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def catalog(db_session: AsyncSession) -> Dict[str, Module]:
    """The five-module catalog used throughout the tests."""
    modules: Dict[str, Module] = {}
    for order, (key, (price, deps, conflicts, is_core)) in enumerate(CATALOG.items()):
        module = Module(
            module_key=key,
            module_name=key.replace("_", " ").title(),
            category="core" if is_core else "add_on",
            dependencies=[{"module_key": d, "type": "required", "reason": ""} for d in deps],
            conflicts_with=conflicts,
            price_monthly=Decimal(price),
            is_core=is_core,
            display_order=order,
        )
        db_session.add(module)
        modules[key] = module
    await db_session.commit()
    return modules


@pytest.fixture()
async def tenant(db_session: AsyncSession, catalog) -> Tenant:
    tenant = Tenant(organization_name="Acme Agency", organization_type="Agency", status="ACTIVE")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest.fixture()
async def starter_plan(db_session: AsyncSession, tenant: Tenant) -> SubscriptionPlan:
    """Plan including crm, assigned to the tenant."""
    plan = SubscriptionPlan(name="Starter", organization_type="Agency", modules_include=["crm"], price="29")
    db_session.add(plan)
    await db_session.flush()
    tenant.subscription_plan_id = plan.id
    await db_session.commit()
    return plan


async def _create_user(db_session: AsyncSession, tenant: Tenant, email: str, role: str) -> User:
    user = User(
        tenant_id=tenant.id,
        full_name=email.split("@")[0],
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        status="ACTIVE",
    )
    db_session.add(user)
    await db_session.commit()
    return user


def _auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(subject=access_token_claims(user.id, user.tenant_id, user.role))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def platform_admin(db_session: AsyncSession, catalog) -> User:
    platform = Tenant(organization_name="Platform", organization_type="Other", status="ACTIVE")
    db_session.add(platform)
    await db_session.commit()
    return await _create_user(db_session, platform, "admin@platform.test", "PLATFORM_ADMIN")


@pytest.fixture()
async def member(db_session: AsyncSession, tenant: Tenant) -> User:
    return await _create_user(db_session, tenant, "member@acme.test", "MEMBER")


@pytest.fixture()
def admin_headers(platform_admin: User) -> Dict[str, str]:
    return _auth_headers(platform_admin)


@pytest.fixture()
def member_headers(member: User) -> Dict[str, str]:
    return _auth_headers(member)
