from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: EmailStr
    name: str
    is_active: bool
    created_at: Optional[datetime] = None


class LoginResponse(BaseModel):
    message: str
    two_factor: bool
    user_id: Optional[UUID] = None
    user: Optional[UserOut] = None
    access_token: Optional[str] = None
    token_type: Optional[str] = None


class CurrentUserResponse(BaseModel):
    user: UserOut
    two_factor_enabled: bool
    two_factor_confirmed: bool
    recovery_codes_remaining: int
