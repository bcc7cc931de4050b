from contextvars import ContextVar, Token
from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class RequestContext:
    request: Request
    request_id: str


_request_context: ContextVar[RequestContext | None] = ContextVar(
    "request_context", default=None
)


def bind_request(request: Request, request_id: str) -> Token:
    return _request_context.set(RequestContext(request, request_id))


def unbind_request(token: Token):
    _request_context.reset(token)


def get_request() -> Request:
    ctx = _request_context.get()
    if ctx is None:
        raise RuntimeError("No request bound, is RequestContextMiddleware installed?")
    return ctx.request


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None
