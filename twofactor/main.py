from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from twofactor.api.v1 import api_router
from twofactor.core.errors import register_exception_handlers
from twofactor.core.health import APP_VERSION
from twofactor.core.limiter import limiter
from twofactor.core.logging import configure_logging
from twofactor.core.settings import settings
from twofactor.events import register_event_handlers
from twofactor.middlewares.request_context import RequestContextMiddleware

OPENAPI_TAGS = [
    {"name": "auth", "description": "Password login, the two factor challenge and logout."},
    {"name": "two-factor", "description": "Authenticator enrolment, recovery codes and disabling."},
    {"name": "health", "description": "Liveness and readiness checks."},
]


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title=f"{settings.app_name} API",
        description="TOTP two factor authentication with token-bound setup sessions.",
        version=APP_VERSION,
        openapi_tags=OPENAPI_TAGS,
    )
    register_exception_handlers(app)

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
