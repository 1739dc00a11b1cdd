from fastapi import APIRouter

from twofactor.core import health
from twofactor.core.limiter import limiter

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live", summary="Process is up")
@limiter.exempt
async def live() -> dict:
    return await health.live_payload()


@router.get("/ready", summary="Database and encryption key are usable")
@limiter.exempt
async def ready() -> dict:
    return await health.ready_payload()
