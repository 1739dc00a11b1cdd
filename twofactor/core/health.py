"""Liveness and readiness checks.

Readiness covers what every two factor request needs: the database, a working
encryption key for stored secrets, and a non-default ``SECRET_KEY`` outside
development.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text

from twofactor.core import crypto
from twofactor.core.settings import settings
from twofactor.db.session import engine

APP_VERSION = "0.1.0"

_CANARY = "health-canary"
_DEFAULT_SECRET_KEY = "change-me"


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


def _check_encryption() -> dict[str, str]:
    try:
        if crypto.decrypt(crypto.encrypt(_CANARY)) != _CANARY:
            return {"status": "error", "error": "encryption round trip mismatch"}
    except crypto.DecryptionError as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


def _check_configuration() -> dict[str, str]:
    if settings.environment != "development" and settings.secret_key == _DEFAULT_SECRET_KEY:
        return {"status": "error", "error": "SECRET_KEY is still the default value"}
    return {"status": "ok"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks = {
        "api": {"status": "ok", "version": APP_VERSION},
        "database": await _check_db(),
        "encryption": _check_encryption(),
        "configuration": _check_configuration(),
    }
    ready = all(check["status"] == "ok" for check in checks.values())
    return {
        "status": "ok" if ready else "degraded",
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _now(),
        "checks": checks,
    }
