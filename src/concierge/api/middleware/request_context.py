"""Per-request identifiers carried through a turn.

A turn spans the HTTP handler, the streaming generator, tool executions and
the persistence callback. Each of them logs, and each log line should carry
the same request id, user and chat, so the middleware parks a
``RequestContext`` in a context variable for the duration of the request.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field, fields
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_PREFIX = "req_"
REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"

_current: ContextVar[RequestContext | None] = ContextVar("concierge_request", default=None)


@dataclass
class RequestContext:
    request_id: str
    start_time: float = field(default_factory=time.monotonic)
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    user_id: str | None = None
    chat_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Fields for a structured log record; unset identifiers are left out."""
        log_context: dict[str, Any] = {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        optional = {"client_ip": self.client_ip, "user_id": self.user_id, "chat_id": self.chat_id}
        log_context.update({key: value for key, value in optional.items() if value})
        return log_context


_CONTEXT_FIELDS = frozenset(f.name for f in fields(RequestContext))


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """``req_`` followed by 64 random bits in hex."""
    return prefix + secrets.token_hex(8)


def get_request_context() -> RequestContext | None:
    return _current.get()


def get_request_id() -> str | None:
    ctx = _current.get()
    return None if ctx is None else ctx.request_id


def set_request_context(context: RequestContext) -> None:
    _current.set(context)


def clear_request_context() -> None:
    _current.set(None)


def update_request_context(**values: Any) -> None:
    """Attach identifiers learned mid-request, e.g. the user after auth.

    Unknown keys land in ``extra``. Outside a request this does nothing.
    """
    ctx = _current.get()
    if ctx is None:
        return
    for key, value in values.items():
        if key in _CONTEXT_FIELDS and key != "extra":
            setattr(ctx, key, value)
        else:
            ctx.extra[key] = value


def _client_address(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",", 1)[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Open a ``RequestContext`` per request and echo its id in the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=_client_address(request),
        )
        token = _current.set(ctx)
        try:
            response = await call_next(request)
        finally:
            _current.reset(token)

        response.headers[REQUEST_ID_HEADER] = ctx.request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{ctx.elapsed_ms:.2f}ms"
        return response


__all__ = [
    "REQUEST_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
    "update_request_context",
]
