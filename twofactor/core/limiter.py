"""Request throttling for credential and code endpoints.

Limits are resolved lazily so they follow the active settings. The six digit
code space is small, which is why ``/verify-two-factor`` gets its own, much
tighter, budget.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from twofactor.core.settings import settings


def default_limit() -> str:
    return f"{settings.rate_limit_per_minute}/minute"


def two_factor_limit() -> str:
    return settings.two_factor_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[default_limit],
    storage_uri=settings.rate_limit_storage_uri,
    strategy="moving-window",
)

__all__ = ["default_limit", "limiter", "two_factor_limit"]
