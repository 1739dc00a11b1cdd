import logging

from fastapi import FastAPI

from twofactor.core.clock import system_clock
from twofactor.core.settings import settings
from twofactor.db.init_db import init_db
from twofactor.db.session import AsyncSessionLocal, dispose_engine
from twofactor.services.setup_sessions import expire_stale_sessions

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "Starting %s: setup_session_ttl=%ss totp_window=%d recovery_codes=%dx%d",
            settings.app_name,
            settings.setup_session_ttl_seconds,
            settings.totp_valid_window,
            settings.recovery_code_count,
            settings.recovery_code_length,
        )
        await init_db()
        async with AsyncSessionLocal() as session:
            expired = await expire_stale_sessions(session, now=system_clock.now())
        if expired:
            logger.info("Expired %d stale setup sessions left from a previous run", expired)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await dispose_engine()
        logger.info("%s stopped", settings.app_name)
