"""Client metadata capture for abuse fingerprinting."""

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from models import ClientContext


def client_context_from_request(request: Request) -> ClientContext:
    """Derive caller address and agent, preferring the first forwarded hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    elif request.client:
        ip_address = request.client.host
    else:
        ip_address = "unknown"
    return ClientContext(ip_address=ip_address, user_agent=request.headers.get("user-agent", ""))


class ClientContextMiddleware(BaseHTTPMiddleware):
    """Stores a ClientContext on ``request.state.client``."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.client = client_context_from_request(request)
        return await call_next(request)
