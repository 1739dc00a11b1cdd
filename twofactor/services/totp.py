"""TOTP (RFC 6238) primitives backed by pyotp.

Codes are six digits over 30 second steps. Time is always passed in by the
caller so verification can be driven by an injected clock.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime

import pyotp

from twofactor.core.settings import settings

CODE_DIGITS = 6
STEP_SECONDS = 30


class TotpSecretError(RuntimeError):
    """Stored secret is not valid base32; a configuration/data fault, never user input."""


def generate_secret() -> str:
    """Return a new base32 secret (32 chars, 160 bits)."""
    return pyotp.random_base32()


def _totp(secret: str) -> pyotp.TOTP:
    if not secret:
        raise TotpSecretError("TOTP secret is empty")
    padded = secret.upper() + "=" * (-len(secret) % 8)
    try:
        base64.b32decode(padded, casefold=True)
    except (binascii.Error, ValueError) as exc:
        raise TotpSecretError("TOTP secret is not valid base32") from exc
    return pyotp.TOTP(secret, digits=CODE_DIGITS, interval=STEP_SECONDS)


def _timestamp(when: datetime) -> int:
    return int(when.timestamp())


def code_at(secret: str, when: datetime) -> str:
    return _totp(secret).at(_timestamp(when))


def is_well_formed(candidate) -> bool:
    return (
        isinstance(candidate, str)
        and len(candidate) == CODE_DIGITS
        and candidate.isascii()
        and candidate.isdigit()
    )


def verify(secret: str, candidate, when: datetime) -> bool:
    """Check ``candidate`` against the step at ``when`` and its neighbours."""
    totp = _totp(secret)
    if not is_well_formed(candidate):
        return False
    return totp.verify(candidate, for_time=_timestamp(when), valid_window=settings.totp_valid_window)


def provisioning_uri(secret: str, account_label: str, issuer: str) -> str:
    return _totp(secret).provisioning_uri(name=account_label, issuer_name=issuer)
