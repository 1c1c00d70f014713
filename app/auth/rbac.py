from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser


PLATFORM_ROLES = ("SUPER_ADMIN", "PLATFORM_ADMIN")


def is_platform_admin(current_user: CurrentUser) -> bool:
    return current_user.role in PLATFORM_ROLES


async def require_platform_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require PLATFORM_ADMIN or SUPER_ADMIN role. Used for catalog edits and executing module plans."""
    if not is_platform_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only Platform Admin can perform this action",
        )
    return current_user

