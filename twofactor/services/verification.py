from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.core import crypto
from twofactor.core.logging import get_audit_logger
from twofactor.models.user import User
from twofactor.services import recovery_codes, totp

audit_logger = get_audit_logger()


async def verify_code(db: AsyncSession, user: User, candidate: str, *, now: datetime) -> bool:
    """Decide whether ``candidate`` is acceptable for ``user`` at ``now``.

    Tries the authenticator code first and falls back to consuming a recovery
    code. Used both for the login challenge and for setup confirmation.
    """
    candidate = candidate.strip() if isinstance(candidate, str) else ""
    is_valid = False
    if user.two_factor_secret is not None and candidate:
        secret = crypto.decrypt(user.two_factor_secret)
        is_valid = totp.verify(secret, candidate, now)
        if not is_valid:
            is_valid = await recovery_codes.consume(db, user.id, candidate)

    audit_logger.info(
        "Two factor verification user=%s code_length=%d valid=%s",
        user.id,
        len(candidate),
        is_valid,
        extra={
            "event": {
                "action": "two_factor.verify",
                "user_id": str(user.id),
                "code_length": len(candidate),
                "is_valid": is_valid,
            }
        },
    )
    return is_valid
