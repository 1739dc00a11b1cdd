import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.api import deps
from twofactor.core.errors import InvalidCode
from twofactor.core.limiter import default_limit, limiter, two_factor_limit
from twofactor.core.security import constant_time_verify, create_access_token
from twofactor.db.session import get_db
from twofactor.models import User
from twofactor.schemas.auth import CurrentUserResponse, LoginRequest, LoginResponse, UserOut
from twofactor.schemas.two_factor import VerifyTwoFactorRequest, VerifyTwoFactorResponse
from twofactor.services import recovery_codes, verification

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/login", response_model=LoginResponse)
@limiter.limit(default_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    stmt = select(User).where(User.email == credentials.email)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if not constant_time_verify(user.hashed_password if user else None, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="The provided credentials are incorrect.",
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")

    if user.two_factor_confirmed:
        logger.info("Password accepted for user=%s; two factor challenge required", user.id)
        return LoginResponse(
            message="Two factor authentication required",
            two_factor=True,
            user_id=user.id,
        )

    return LoginResponse(
        message="Login successful",
        two_factor=False,
        user=UserOut.model_validate(user),
        access_token=create_access_token(str(user.id), token_version=user.token_version),
        token_type="bearer",
    )


@router.post("/verify-two-factor", response_model=VerifyTwoFactorResponse)
@limiter.limit(two_factor_limit)
async def verify_two_factor(
    payload: VerifyTwoFactorRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> VerifyTwoFactorResponse:
    user = await db.get(User, payload.user_id)
    if user is None or not user.is_active or not user.two_factor_confirmed:
        # Same answer as a wrong code so account existence and 2FA state stay hidden.
        raise InvalidCode()

    if not await verification.verify_code(db, user, payload.code, now=clock.now()):
        raise InvalidCode()

    return VerifyTwoFactorResponse(
        message="Two factor authentication successful",
        user=UserOut.model_validate(user),
        access_token=create_access_token(str(user.id), token_version=user.token_version),
        two_factor_enabled=True,
    )


@router.post("/logout", status_code=204)
async def logout(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    current_user.token_version += 1
    db.add(current_user)
    await db.commit()
    return None


@router.get("/user", response_model=CurrentUserResponse)
async def read_current_user(current_user: User = Depends(deps.get_current_user)) -> CurrentUserResponse:
    return CurrentUserResponse(
        user=UserOut.model_validate(current_user),
        two_factor_enabled=current_user.has_two_factor_secret,
        two_factor_confirmed=current_user.two_factor_confirmed,
        recovery_codes_remaining=recovery_codes.remaining_count(current_user),
    )
