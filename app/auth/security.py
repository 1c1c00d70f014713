from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

import bcrypt
from jose import JWTError, jwt

from app.core.config import settings


class InvalidTokenError(Exception):
    """Access token is malformed, expired, or missing a required claim."""


def hash_password(plain_password: str) -> str:
    return bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored hash is not a bcrypt hash
        return False


def access_token_claims(
    user_id: UUID, tenant_id: UUID, role: str, modules: Iterable[str] = ()
) -> Dict[str, Any]:
    """Claims carried by an access token. `modules` is informational for clients; the API re-reads it."""
    return {
        "sub": str(user_id),
        "user_id": str(user_id),
        "tenant_id": str(tenant_id),
        "role": role,
        "modules": sorted(modules),
        "iat": int(datetime.now(timezone.utc).timestamp()),
    }


def create_access_token(
    *, subject: Dict, expires_minutes: Optional[int] = None
) -> str:
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    to_encode = subject.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry; return claims with user_id and tenant_id as UUIDs."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise InvalidTokenError(str(e)) from e

    user_id = payload.get("user_id") or payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id or not payload.get("role"):
        raise InvalidTokenError("Missing claims")
    try:
        payload["user_id"] = UUID(user_id)
        payload["tenant_id"] = UUID(tenant_id)
    except ValueError as e:
        raise InvalidTokenError("Malformed id claim") from e
    return payload
