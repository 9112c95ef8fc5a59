"""Session endpoints called by the identity provider integration."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from jetswap.api.deps import get_services
from jetswap.identity import AuthMethod, UserProfile, sync_profile
from jetswap.swap.factory import SwapServices

router = APIRouter()


class SessionRequest(BaseModel):
    """Authenticated profile reported by the identity provider."""

    user_id: str
    auth_method: AuthMethod
    identifier: str
    display_name: Optional[str] = None


@router.post("/sessions")
async def establish_session(body: SessionRequest, services: SwapServices = Depends(get_services)):
    """Sync the profile and open a session. Returns the profile with its role."""
    profile = UserProfile(
        id=body.user_id,
        auth_method=body.auth_method,
        identifier=body.identifier,
        display_name=body.display_name,
    )
    synced = await sync_profile(profile, services.role_policy, services.ledger)
    services.sessions.establish(synced)
    return synced.to_dict()


@router.delete("/sessions/{user_id}")
async def end_session(user_id: str, services: SwapServices = Depends(get_services)):
    return {"user_id": user_id, "invalidated": services.sessions.invalidate(user_id)}
