import logging
from typing import Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.modules.service import get_tenant_active_modules
from app.auth.models import User
from app.auth.schemas import LoginRequest, LoginResponse
from app.auth.security import access_token_claims, create_access_token, verify_password
from app.core.exceptions import ServiceError
from app.core.models import Tenant

logger = logging.getLogger(__name__)


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    """Check credentials and issue an access token carrying the tenant's active modules."""
    # 1. Find user by email (case-insensitive)
    user_stmt = select(User).where(func.lower(User.email) == func.lower(payload.email))
    user: Optional[User] = (await db.execute(user_stmt)).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %s", payload.email)
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    # 2. User and tenant must both be active
    if user.status != "ACTIVE":
        raise ServiceError("User is inactive", status.HTTP_403_FORBIDDEN)
    tenant: Optional[Tenant] = await db.get(Tenant, user.tenant_id)
    if not tenant:
        raise ServiceError("Tenant not found", status.HTTP_403_FORBIDDEN)
    if tenant.status != "ACTIVE":
        raise ServiceError("Tenant is inactive", status.HTTP_403_FORBIDDEN)

    # 3. Entitlements at login time
    modules = sorted(await get_tenant_active_modules(db, tenant.id))

    access_token = create_access_token(
        subject=access_token_claims(user.id, user.tenant_id, user.role, modules)
    )
    logger.info("User %s logged in", user.id, extra={"tenant_id": tenant.id})
    return LoginResponse(
        access_token=access_token,
        user_id=user.id,
        tenant_id=user.tenant_id,
        role=user.role,
        modules=modules,
    )
