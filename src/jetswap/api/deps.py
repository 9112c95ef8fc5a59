"""Shared FastAPI dependencies."""

from dataclasses import replace

from fastapi import Header, HTTPException, Request

from jetswap.identity import AuthMethod, Role, UserProfile
from jetswap.swap.factory import SwapServices


def get_services(request: Request) -> SwapServices:
    """Services built for this app instance."""
    return request.app.state.services


async def require_admin(
    request: Request,
    x_admin_token: str = Header(None),
    x_admin_actor: str = Header("admin"),
) -> UserProfile:
    """Verify the admin token and resolve the acting administrator.

    If ADMIN_TOKEN is not set, allows access (dev mode). When ADMIN_IDENTIFIERS
    is set, the actor must be on it.
    """
    services = get_services(request)
    settings = services.settings

    if settings.admin_token and x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    actor = UserProfile(id=x_admin_actor, auth_method=AuthMethod.EMAIL, identifier=x_admin_actor)
    if not settings.admin_identifier_set:
        return replace(actor, role=Role.ADMIN)
    return replace(actor, role=services.role_policy.role_for(actor))
