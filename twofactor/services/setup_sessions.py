"""Two-factor setup sessions.

A setup session coordinates one provisioning attempt: the client starts a
session, fetches the QR code bound to it, then confirms with a code from the
authenticator app. Sessions move from ``pending`` to exactly one of
``confirmed``, ``expired`` or ``cancelled`` and never leave those states.

Every transition out of ``pending`` is a conditional UPDATE guarded by
``status = 'pending'`` so concurrent requests on the same session cannot both
win. Expiry is evaluated lazily whenever a session is read or written.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.core import crypto
from twofactor.core.errors import (
    AlreadyConfirmed,
    InvalidCode,
    NotEnabled,
    NotFound,
    SessionExpired,
)
from twofactor.core.settings import settings
from twofactor.models.setup_session import SetupSessionStatus, TwoFactorSetupSession
from twofactor.models.user import User
from twofactor.services import qr, recovery_codes, totp, verification

logger = logging.getLogger(__name__)

PENDING = SetupSessionStatus.PENDING
START_ATTEMPTS = 3


@dataclass(slots=True)
class QrPayload:
    otpauth_uri: str
    svg_data_uri: str
    expires_at: datetime


def setup_session_ttl() -> timedelta:
    return timedelta(seconds=settings.setup_session_ttl_seconds)


# ─── Internal helpers ─────────────────────────────────────────────────────────


async def _get_session(db: AsyncSession, user: User, token: str) -> TwoFactorSetupSession:
    stmt = (
        select(TwoFactorSetupSession)
        .where(
            TwoFactorSetupSession.token == str(token),
            TwoFactorSetupSession.user_id == user.id,
        )
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFound()
    return session


async def _transition(
    db: AsyncSession,
    session: TwoFactorSetupSession,
    target: SetupSessionStatus,
    **values,
) -> bool:
    """Move a pending session to ``target``. Caller commits."""
    stmt = (
        update(TwoFactorSetupSession)
        .where(
            TwoFactorSetupSession.id == session.id,
            TwoFactorSetupSession.status == PENDING.value,
        )
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def _expire(db: AsyncSession, session: TwoFactorSetupSession) -> None:
    if await _transition(db, session, SetupSessionStatus.EXPIRED):
        logger.info("Setup session %s expired", session.id)
    await db.commit()
    await db.refresh(session)


async def _mark_confirmed(
    db: AsyncSession, session: TwoFactorSetupSession, confirmed_at: datetime
) -> None:
    if await _transition(db, session, SetupSessionStatus.CONFIRMED, confirmed_at=confirmed_at):
        logger.info("Setup session %s confirmed out of band", session.id)
    await db.commit()
    await db.refresh(session)


async def _ensure_open(db: AsyncSession, session: TwoFactorSetupSession, now: datetime) -> None:
    if session.session_status is PENDING and session.is_expired(now):
        await _expire(db, session)

    status = session.session_status
    if status is SetupSessionStatus.CONFIRMED:
        raise AlreadyConfirmed()
    if status is SetupSessionStatus.EXPIRED:
        raise SessionExpired()
    if status is SetupSessionStatus.CANCELLED:
        raise SessionExpired("Setup session was cancelled; start the two factor setup again")


async def _record_attempt(db: AsyncSession, session: TwoFactorSetupSession, now: datetime) -> None:
    stmt = (
        update(TwoFactorSetupSession)
        .where(TwoFactorSetupSession.id == session.id)
        .values(attempts=TwoFactorSetupSession.attempts + 1, last_attempt_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
    await db.commit()
    await db.refresh(session)


async def _provision(db: AsyncSession, user: User) -> None:
    """Give the user a secret and recovery codes unless another request already did."""
    if user.two_factor_secret is not None:
        return
    stmt = (
        update(User)
        .where(User.id == user.id, User.two_factor_secret.is_(None))
        .values(
            two_factor_secret=crypto.encrypt(totp.generate_secret()),
            two_factor_recovery_codes=crypto.encrypt_codes(recovery_codes.generate_codes()),
            two_factor_confirmed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    await db.refresh(user)
    if result.rowcount == 1:
        logger.info("Two factor secret provisioned for user=%s", user.id)


# ─── Operations ───────────────────────────────────────────────────────────────


async def cancel_pending_sessions(db: AsyncSession, user_id) -> int:
    """Cancel every pending session of ``user_id``. Caller commits."""
    stmt = (
        update(TwoFactorSetupSession)
        .where(
            TwoFactorSetupSession.user_id == user_id,
            TwoFactorSetupSession.status == PENDING.value,
        )
        .values(status=SetupSessionStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def start_session(
    db: AsyncSession,
    user: User,
    *,
    now: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> TwoFactorSetupSession:
    """Provision the secret if needed and open a fresh pending session."""
    await db.refresh(user)
    if user.two_factor_confirmed:
        raise AlreadyConfirmed()

    await _provision(db, user)
    user_id = user.id

    for attempt in range(1, START_ATTEMPTS + 1):
        cancelled = await cancel_pending_sessions(db, user_id)
        session = TwoFactorSetupSession(
            user_id=user_id,
            token=str(uuid.uuid4()),
            status=PENDING.value,
            created_at=now,
            expires_at=now + setup_session_ttl(),
            attempts=0,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(session)
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent start inserted its pending row after our cancel ran.
            await db.rollback()
            await db.refresh(user)
            if attempt == START_ATTEMPTS:
                raise
            logger.info("Concurrent setup start for user=%s; retrying", user_id)
            continue
        break

    await db.refresh(session)
    logger.info(
        "Setup session %s started for user=%s (cancelled %d pending)",
        session.id,
        user_id,
        cancelled,
    )
    return session


async def fetch_qr(db: AsyncSession, user: User, token: str, *, now: datetime) -> QrPayload:
    """Return the QR payload for a live session. Never includes the raw secret."""
    session = await _get_session(db, user, token)
    await _ensure_open(db, session, now)

    await db.refresh(user)
    if user.two_factor_confirmed:
        raise AlreadyConfirmed()
    if user.two_factor_secret is None:
        raise NotEnabled()

    if session.shown_at is None:
        stmt = (
            update(TwoFactorSetupSession)
            .where(
                TwoFactorSetupSession.id == session.id,
                TwoFactorSetupSession.shown_at.is_(None),
            )
            .values(shown_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()
        await db.refresh(session)

    secret = crypto.decrypt(user.two_factor_secret)
    uri = totp.provisioning_uri(secret, user.email, settings.app_name)
    return QrPayload(
        otpauth_uri=uri,
        svg_data_uri=qr.qr_svg_data_uri(uri),
        expires_at=session.expires_at,
    )


async def confirm_session(
    db: AsyncSession,
    user: User,
    token: str,
    code: str,
    *,
    now: datetime,
) -> TwoFactorSetupSession:
    """Confirm possession of the authenticator and enable two factor on the account.

    The attempt is counted before the code is checked, so failed and
    successful tries alike show up in ``attempts``.
    """
    session = await _get_session(db, user, token)
    await _ensure_open(db, session, now)
    await _record_attempt(db, session, now)

    await db.refresh(user)
    if user.two_factor_secret is None:
        raise NotEnabled()
    if user.two_factor_confirmed_at is not None:
        await _mark_confirmed(db, session, user.two_factor_confirmed_at)
        raise AlreadyConfirmed()

    if not await verification.verify_code(db, user, code, now=now):
        logger.info("Setup session %s rejected code (attempts=%d)", session.id, session.attempts)
        raise InvalidCode()

    won = await _transition(db, session, SetupSessionStatus.CONFIRMED, confirmed_at=now)
    if won:
        stmt = (
            update(User)
            .where(
                User.id == user.id,
                User.two_factor_secret.is_not(None),
                User.two_factor_confirmed_at.is_(None),
            )
            .values(two_factor_confirmed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount != 1:
            # Disabled or confirmed elsewhere between the check and the write.
            await db.rollback()
            await db.refresh(session)
            await db.refresh(user)
            if user.two_factor_confirmed_at is not None:
                raise AlreadyConfirmed()
            raise NotEnabled()
    await db.commit()
    await db.refresh(session)
    await db.refresh(user)

    if not won:
        if session.session_status is SetupSessionStatus.CONFIRMED:
            raise AlreadyConfirmed()
        raise SessionExpired()

    logger.info("Setup session %s confirmed for user=%s", session.id, user.id)
    return session


async def session_status(
    db: AsyncSession, user: User, token: str, *, now: datetime
) -> TwoFactorSetupSession:
    """Read a session, settling lazy expiry or out-of-band confirmation first."""
    session = await _get_session(db, user, token)
    if session.session_status is not PENDING:
        return session

    if session.is_expired(now):
        await _expire(db, session)
        return session

    await db.refresh(user)
    if user.two_factor_confirmed_at is not None:
        await _mark_confirmed(db, session, user.two_factor_confirmed_at)
    return session


async def disable_two_factor(db: AsyncSession, user: User) -> None:
    """Cancel pending setup and wipe secret, recovery codes and confirmation."""
    cancelled = await cancel_pending_sessions(db, user.id)
    stmt = (
        update(User)
        .where(User.id == user.id)
        .values(
            two_factor_secret=None,
            two_factor_recovery_codes=None,
            two_factor_confirmed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
    await db.commit()
    await db.refresh(user)
    logger.info("Two factor disabled for user=%s (cancelled %d pending)", user.id, cancelled)


# ─── Legacy flow adapters ─────────────────────────────────────────────────────


async def open_session(
    db: AsyncSession,
    user: User,
    *,
    now: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> TwoFactorSetupSession:
    """Return the user's live pending session, starting one if there is none."""
    stmt = (
        select(TwoFactorSetupSession)
        .where(
            TwoFactorSetupSession.user_id == user.id,
            TwoFactorSetupSession.status == PENDING.value,
        )
        .order_by(TwoFactorSetupSession.created_at.desc(), TwoFactorSetupSession.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    session = result.scalar_one_or_none()
    if session is not None:
        if not session.is_expired(now):
            return session
        await _expire(db, session)
    return await start_session(db, user, now=now, ip_address=ip_address, user_agent=user_agent)


async def confirm_legacy(
    db: AsyncSession,
    user: User,
    code: str,
    *,
    now: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> TwoFactorSetupSession:
    await db.refresh(user)
    if user.two_factor_secret is None:
        raise NotEnabled()
    if user.two_factor_confirmed:
        raise AlreadyConfirmed()
    session = await open_session(db, user, now=now, ip_address=ip_address, user_agent=user_agent)
    return await confirm_session(db, user, session.token, code, now=now)


# ─── Maintenance ──────────────────────────────────────────────────────────────


async def expire_stale_sessions(db: AsyncSession, *, now: datetime) -> int:
    """Mark every pending session past its TTL as expired."""
    stmt = (
        update(TwoFactorSetupSession)
        .where(
            TwoFactorSetupSession.status == PENDING.value,
            TwoFactorSetupSession.expires_at < now,
        )
        .values(status=SetupSessionStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount
