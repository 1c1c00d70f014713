from typing import List
from uuid import UUID

from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: UUID
    tenant_id: UUID
    role: str
    # Module keys active for the tenant at login time
    modules: List[str]


class CurrentUser(BaseModel):
    """Authenticated caller, as needed by tenant scoping and the platform-admin check."""

    id: UUID
    tenant_id: UUID
    role: str
    email: str
