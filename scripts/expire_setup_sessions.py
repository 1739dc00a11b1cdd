#!/usr/bin/env python3
"""
Mark pending two-factor setup sessions whose TTL has elapsed as expired.

Expiry is also applied lazily on every request touching a session; this sweep
only keeps the ``pending`` index small. Rows are never deleted.

Usage:
    python scripts/expire_setup_sessions.py
"""

from __future__ import annotations

import asyncio
import logging

from twofactor.core.clock import system_clock
from twofactor.core.logging import configure_logging
from twofactor.db.session import AsyncSessionLocal
from twofactor.services.setup_sessions import expire_stale_sessions

logger = logging.getLogger("twofactor.scripts.expire_setup_sessions")


async def main() -> int:
    async with AsyncSessionLocal() as session:
        expired = await expire_stale_sessions(session, now=system_clock.now())
    logger.info("Expired %d stale setup sessions", expired)
    return expired


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
