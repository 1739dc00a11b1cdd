from __future__ import annotations

import logging
import secrets

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.core import crypto
from twofactor.core.errors import NotEnabled
from twofactor.core.settings import settings
from twofactor.models.user import User

logger = logging.getLogger(__name__)

RECOVERY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # Exclude confusing chars: 0, O, 1, I
MAX_CONSUME_ATTEMPTS = 5


def normalize_code(code: str) -> str:
    return "".join(ch for ch in code.strip().upper() if ch not in "- ")


def generate_codes(count: int | None = None, length: int | None = None) -> list[str]:
    """Generate ``count`` distinct human-readable recovery codes."""
    if count is None:
        count = settings.recovery_code_count
    if length is None:
        length = settings.recovery_code_length
    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(length))
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes


def remaining_count(user: User) -> int:
    return len(crypto.decrypt_codes(user.two_factor_recovery_codes))


async def regenerate(db: AsyncSession, user: User) -> list[str]:
    """Replace the user's whole recovery-code set; every earlier code stops working.

    Raises ``NotEnabled`` when the secret is gone, e.g. after a concurrent disable.
    """
    codes = generate_codes()
    stmt = (
        update(User)
        .where(User.id == user.id, User.two_factor_secret.is_not(None))
        .values(two_factor_recovery_codes=crypto.encrypt_codes(codes))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    await db.refresh(user)
    if result.rowcount != 1:
        raise NotEnabled()
    logger.info("Recovery codes regenerated for user=%s count=%d", user.id, len(codes))
    return codes


async def _load_codes_blob(db: AsyncSession, user_id) -> str | None:
    stmt = select(User.two_factor_recovery_codes).where(User.id == user_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _compare_and_swap(db: AsyncSession, user_id, *, expected: str, replacement: str) -> bool:
    """Write ``replacement`` only if the stored set is still ``expected``."""
    stmt = (
        update(User)
        .where(User.id == user_id, User.two_factor_recovery_codes == expected)
        .values(two_factor_recovery_codes=replacement)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


async def consume(db: AsyncSession, user_id, candidate: str) -> bool:
    """Use up ``candidate`` if it is one of the user's unused codes.

    Each code is accepted at most once, even under concurrent requests: the
    reduced set is written with a compare-and-swap on the ciphertext read.
    """
    if not isinstance(candidate, str):
        return False
    normalized = normalize_code(candidate)
    if not normalized:
        return False

    for _ in range(MAX_CONSUME_ATTEMPTS):
        blob = await _load_codes_blob(db, user_id)
        codes = crypto.decrypt_codes(blob)
        if normalized not in codes:
            return False
        remaining = [code for code in codes if code != normalized]
        if await _compare_and_swap(
            db, user_id, expected=blob, replacement=crypto.encrypt_codes(remaining)
        ):
            cached = await db.get(User, user_id)
            if cached is not None:
                await db.refresh(cached, ["two_factor_recovery_codes"])
            logger.info("Recovery code consumed for user=%s remaining=%d", user_id, len(remaining))
            return True
        logger.info("Recovery code set changed concurrently for user=%s; retrying", user_id)
    return False
