"""Per-request values attached to every log record."""

import contextvars
from typing import Optional

UNSET = "-"

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default=UNSET)
_user_id: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default=UNSET)
_client_ip: contextvars.ContextVar[str] = contextvars.ContextVar("client_ip", default=UNSET)


def bind_request(request_id: str, client_ip: Optional[str]) -> None:
    """Start a fresh context for one HTTP request."""
    _request_id.set(request_id)
    _client_ip.set(client_ip or UNSET)
    _user_id.set(UNSET)


def set_user_id(user_id: str) -> None:
    _user_id.set(user_id)


def get_request_id() -> str:
    return _request_id.get()


def get_user_id() -> str:
    return _user_id.get()


def get_client_ip() -> str:
    return _client_ip.get()


def snapshot() -> dict[str, str]:
    return {
        "request_id": _request_id.get(),
        "user_id": _user_id.get(),
        "client_ip": _client_ip.get(),
    }
