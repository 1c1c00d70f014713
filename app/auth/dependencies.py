from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.auth.security import InvalidTokenError, decode_access_token
from app.core.models import Tenant
from app.db.session import get_db


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user from the access token.

    The user and their tenant must both still be ACTIVE; a token issued before a
    suspension stops working immediately.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        claims = decode_access_token(token)
    except InvalidTokenError:
        raise credentials_exception

    stmt = (
        select(User, Tenant.status)
        .join(Tenant, Tenant.id == User.tenant_id)
        .where(User.id == claims["user_id"], User.tenant_id == claims["tenant_id"])
    )
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        raise credentials_exception
    user, tenant_status = row
    if user.status != "ACTIVE" or tenant_status != "ACTIVE":
        raise credentials_exception

    return CurrentUser(id=user.id, tenant_id=user.tenant_id, role=user.role, email=user.email)
