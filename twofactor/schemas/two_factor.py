from datetime import datetime
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field

from twofactor.models.setup_session import SetupSessionStatus
from twofactor.schemas.auth import UserOut

# Six-digit TOTP codes or recovery codes (optionally with a separator).
Code = Annotated[str, Field(min_length=6, max_length=32)]


class MessageResponse(BaseModel):
    message: str


class VerifyTwoFactorRequest(BaseModel):
    user_id: UUID
    code: Code


class VerifyTwoFactorResponse(BaseModel):
    message: str
    user: UserOut
    access_token: str
    token_type: str = "bearer"
    two_factor_enabled: bool


class ConfirmRequest(BaseModel):
    code: Code


class SetupConfirmRequest(BaseModel):
    token: UUID
    code: Code


class SetupStartResponse(BaseModel):
    token: str
    expires_at: datetime


class QrCodeResponse(BaseModel):
    qr_code_url: str
    qr_code_svg: str
    expires_at: datetime


class EnableResponse(QrCodeResponse):
    message: str
    token: str


class SetupStatusResponse(BaseModel):
    status: SetupSessionStatus
    expires_at: datetime


class SetupConfirmResponse(BaseModel):
    message: str
    status: SetupSessionStatus
    confirmed_at: datetime


class RecoveryCodesResponse(BaseModel):
    message: str
    recovery_codes: list[str]
