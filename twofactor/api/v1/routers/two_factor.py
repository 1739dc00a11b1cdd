from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.api import deps
from twofactor.core.errors import NotEnabled
from twofactor.db.session import get_db
from twofactor.models import User
from twofactor.schemas.two_factor import (
    ConfirmRequest,
    EnableResponse,
    MessageResponse,
    QrCodeResponse,
    RecoveryCodesResponse,
    SetupConfirmRequest,
    SetupConfirmResponse,
    SetupStartResponse,
    SetupStatusResponse,
)
from twofactor.services import recovery_codes
from twofactor.services import setup_sessions as setup_service

router = APIRouter(prefix="/two-factor", tags=["two-factor"])


def _qr_response(payload: setup_service.QrPayload) -> QrCodeResponse:
    return QrCodeResponse(
        qr_code_url=payload.otpauth_uri,
        qr_code_svg=payload.svg_data_uri,
        expires_at=payload.expires_at,
    )


# ─── Setup session flow ───────────────────────────────────────────────────────


@router.post("/setup/start", response_model=SetupStartResponse)
async def start_setup(
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> SetupStartResponse:
    session = await setup_service.start_session(
        db, current_user, now=clock.now(), **deps.client_metadata(request)
    )
    return SetupStartResponse(token=session.token, expires_at=session.expires_at)


@router.get("/setup/qr", response_model=QrCodeResponse)
async def setup_qr(
    token: UUID = Query(...),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> QrCodeResponse:
    payload = await setup_service.fetch_qr(db, current_user, str(token), now=clock.now())
    return _qr_response(payload)


@router.get("/setup/status", response_model=SetupStatusResponse)
async def setup_status(
    token: UUID = Query(...),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> SetupStatusResponse:
    session = await setup_service.session_status(db, current_user, str(token), now=clock.now())
    return SetupStatusResponse(status=session.session_status, expires_at=session.expires_at)


@router.post("/setup/confirm", response_model=SetupConfirmResponse)
async def setup_confirm(
    payload: SetupConfirmRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> SetupConfirmResponse:
    session = await setup_service.confirm_session(
        db, current_user, str(payload.token), payload.code, now=clock.now()
    )
    return SetupConfirmResponse(
        message="Two factor authentication confirmed successfully",
        status=session.session_status,
        confirmed_at=session.confirmed_at,
    )


# ─── Legacy endpoints (implicit session) ──────────────────────────────────────


@router.post("/enable", response_model=EnableResponse)
async def enable(
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> EnableResponse:
    now = clock.now()
    session = await setup_service.start_session(
        db, current_user, now=now, **deps.client_metadata(request)
    )
    payload = await setup_service.fetch_qr(db, current_user, session.token, now=now)
    return EnableResponse(
        message="Two factor authentication enabled",
        token=session.token,
        qr_code_url=payload.otpauth_uri,
        qr_code_svg=payload.svg_data_uri,
        expires_at=payload.expires_at,
    )


@router.get("/qr-code", response_model=QrCodeResponse)
async def show_qr_code(
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> QrCodeResponse:
    if not current_user.has_two_factor_secret:
        raise NotEnabled()
    now = clock.now()
    session = await setup_service.open_session(
        db, current_user, now=now, **deps.client_metadata(request)
    )
    payload = await setup_service.fetch_qr(db, current_user, session.token, now=now)
    return _qr_response(payload)


@router.post("/confirm", response_model=MessageResponse)
async def confirm(
    payload: ConfirmRequest,
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: deps.Clock = Depends(deps.get_clock),
) -> MessageResponse:
    await setup_service.confirm_legacy(
        db, current_user, payload.code, now=clock.now(), **deps.client_metadata(request)
    )
    return MessageResponse(message="Two factor authentication confirmed successfully")


@router.post("/disable", response_model=MessageResponse)
async def disable(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await setup_service.disable_two_factor(db, current_user)
    return MessageResponse(message="Two factor authentication disabled")


# ─── Recovery codes ───────────────────────────────────────────────────────────


@router.post("/recovery-codes", response_model=RecoveryCodesResponse)
async def generate_recovery_codes(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecoveryCodesResponse:
    if not current_user.has_two_factor_secret:
        raise NotEnabled()
    codes = await recovery_codes.regenerate(db, current_user)
    return RecoveryCodesResponse(message="New recovery codes generated", recovery_codes=codes)
