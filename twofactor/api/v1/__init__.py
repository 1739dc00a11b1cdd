from fastapi import APIRouter

from twofactor.api.v1.routers import auth, health, two_factor

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(two_factor.router)

__all__ = ["api_router"]
