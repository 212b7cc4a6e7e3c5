"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Request

from middleware import client_context_from_request
from models import ClientContext
from services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Dependency to get the service container from application state."""
    return request.app.state.services  # type: ignore[no-any-return]


def get_bearer_token(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, if any."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_client_context(request: Request) -> ClientContext:
    client = getattr(request.state, "client", None)
    if isinstance(client, ClientContext):
        return client
    return client_context_from_request(request)
