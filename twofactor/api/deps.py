from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.core.clock import Clock, get_clock
from twofactor.core.context import set_user_id
from twofactor.core.security import decode_token
from twofactor.db.session import get_db
from twofactor.models import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/login")

USER_AGENT_MAX_LENGTH = 1000

__all__ = [
    "Clock",
    "client_metadata",
    "get_clock",
    "get_current_user",
    "get_db_session",
    "oauth2_scheme",
]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Resolve the bearer token to an active user whose token version still matches."""
    try:
        claims = decode_token(token, expected_type="access")
        user_id = UUID(str(claims["sub"]))
    except (KeyError, ValueError) as exc:
        raise _unauthorized("Invalid token") from exc

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("Invalid token")
    if claims.get("tv") is not None and claims["tv"] != user.token_version:
        raise _unauthorized("Token revoked")

    set_user_id(str(user.id))
    return user


def client_metadata(request: Request) -> dict[str, str | None]:
    """Provenance recorded on setup sessions."""
    user_agent = request.headers.get("user-agent")
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
    }
