"""Guest authentication router."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from models import Authenticated, ClientContext, IdentitySnapshot, IssuedToken, UsageReport
from services import ServiceContainer
from utils import AuthenticationRequired

from .dependencies import get_bearer_token, get_client_context, get_services

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/guest", response_model=IssuedToken, status_code=status.HTTP_201_CREATED)
async def create_guest(
    services: ServiceContainer = Depends(get_services),
    client: ClientContext = Depends(get_client_context),
) -> IssuedToken:
    """Issue a new guest identity and token."""
    return await services.identities.create_identity(client)


@router.post("/guest/refresh", response_model=IssuedToken)
async def refresh_guest(
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
    client: ClientContext = Depends(get_client_context),
) -> IssuedToken:
    """Reset quota, extend the window and re-sign the caller's token."""
    return await services.identities.renew(token, client)


@router.post("/logout")
async def logout(
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """Revoke the caller's token."""
    await services.identities.revoke(token)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/verify")
async def verify(
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """Report whether the caller's token is usable. Never counted against quota."""
    auth = await services.identities.verify(token)
    if isinstance(auth, Authenticated):
        return {
            "authenticated": True,
            "renewed": auth.renewed,
            "identity": IdentitySnapshot.of(auth.identity).model_dump(mode="json"),
        }
    return {"authenticated": False, "reason": auth.reason}


@router.get("/guest/usage", response_model=UsageReport)
async def guest_usage(
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> UsageReport:
    """Usage analytics for the caller's identity. Never counted against quota."""
    auth = await services.identities.verify(token)
    if not isinstance(auth, Authenticated):
        raise AuthenticationRequired("Valid guest token required", {"reason": auth.reason})
    return services.identities.usage(auth.identity)
