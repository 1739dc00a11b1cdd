"""Encryption at rest for two-factor material.

Secrets and recovery-code sets are stored as Fernet tokens derived from
``SECRET_KEY``. Callers only see ``encrypt``/``decrypt`` and the JSON helpers
for the recovery-code list.
"""

from __future__ import annotations

import base64
import hashlib
import json
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from twofactor.core.settings import settings


class DecryptionError(RuntimeError):
    """Stored ciphertext could not be decrypted with the configured key."""


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


@lru_cache(maxsize=16)
def _fernet_for_secret(secret: str) -> Fernet:
    return Fernet(_derive_key(secret))


def _fernet() -> Fernet:
    return _fernet_for_secret(settings.secret_key)


def encrypt(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt(blob: str) -> str:
    try:
        return _fernet().decrypt(blob.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise DecryptionError("Unable to decrypt value") from exc


def encrypt_codes(codes: list[str]) -> str:
    return encrypt(json.dumps(codes))


def decrypt_codes(blob: str | None) -> list[str]:
    if not blob:
        return []
    return list(json.loads(decrypt(blob)))
