"""
Seed script to create the Platform tenant and its first PLATFORM_ADMIN user.

Run once (after seed_modules) with env set:
  PLATFORM_ADMIN_EMAIL=admin@yourplatform.com
  PLATFORM_ADMIN_PASSWORD=YourSecurePassword

Re-running resets the admin's password and role; nothing else is touched.
"""
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.security import hash_password
from app.core.config import settings
from app.core.enums import OrganizationType
from app.core.models import Tenant
from app.db.session import AsyncSessionLocal

PLATFORM_TENANT_NAME = "Platform"
PLATFORM_ADMIN_ROLE = "PLATFORM_ADMIN"


async def _platform_tenant(db: AsyncSession) -> Tenant:
    result = await db.execute(select(Tenant).where(Tenant.organization_name == PLATFORM_TENANT_NAME))
    tenant = result.scalar_one_or_none()
    if tenant:
        print("Platform tenant already exists.")
        return tenant
    tenant = Tenant(
        organization_name=PLATFORM_TENANT_NAME,
        organization_type=OrganizationType.OTHER.value,
        status="ACTIVE",
    )
    db.add(tenant)
    await db.flush()
    print("Created Platform tenant.")
    return tenant


async def seed_platform_admin(db: AsyncSession) -> None:
    email = settings.platform_admin_email
    password = settings.platform_admin_password
    if not email or not password:
        print("PLATFORM_ADMIN_EMAIL / PLATFORM_ADMIN_PASSWORD not set; nothing to do.")
        return

    tenant = await _platform_tenant(db)

    result = await db.execute(select(User).where(User.tenant_id == tenant.id, User.email == email))
    admin = result.scalar_one_or_none()
    if admin is None:
        admin = User(tenant_id=tenant.id, full_name="Platform Admin", email=email)
        db.add(admin)
        print("Created PLATFORM_ADMIN user:", email)
    else:
        print("Reset existing PLATFORM_ADMIN user:", email)
    admin.role = PLATFORM_ADMIN_ROLE
    admin.status = "ACTIVE"
    admin.password_hash = hash_password(password)

    await db.commit()


async def main() -> None:
    async with AsyncSessionLocal() as db:
        try:
            await seed_platform_admin(db)
        except Exception as e:
            await db.rollback()
            print("Error:", e)
            raise


if __name__ == "__main__":
    asyncio.run(main())
