"""Admin API endpoints (token-protected)."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from jetswap.api.deps import get_services, require_admin
from jetswap.api.routers.swaps import SwapRecordOut
from jetswap.identity import UserProfile
from jetswap.models import AuditEntry, SwapStatus
from jetswap.swap.factory import SwapServices

router = APIRouter(prefix="/admin", tags=["admin"])


class UserOut(BaseModel):
    """User profile summary."""

    id: str
    auth_method: str
    identifier: str
    display_name: str | None = None
    role: str


class AdminSwapOut(SwapRecordOut):
    """Swap record with owner, for the cross-user dashboard."""

    user_id: str


class StatusOverride(BaseModel):
    """Administrative status change."""

    status: SwapStatus
    reason: str = ""


class AuditEntryOut(BaseModel):
    record_id: str
    actor_id: str
    from_status: str
    to_status: str
    reason: str
    at: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryOut":
        return cls(**entry.to_dict())


@router.get("/swaps", response_model=list[AdminSwapOut])
async def list_swaps(
    limit: int = Query(200, ge=1, le=500),
    actor: UserProfile = Depends(require_admin),
    services: SwapServices = Depends(get_services),
) -> list[AdminSwapOut]:
    """Swap records across all users, newest first."""
    records = await services.admin.list_swaps(actor, limit)
    return [
        AdminSwapOut(user_id=record.user_id, **SwapRecordOut.from_record(record).model_dump())
        for record in records
    ]


@router.get("/users", response_model=list[UserOut])
async def list_users(
    limit: int = Query(100, ge=1, le=500),
    actor: UserProfile = Depends(require_admin),
    services: SwapServices = Depends(get_services),
) -> list[UserOut]:
    profiles = await services.admin.list_users(actor, limit)
    return [UserOut(**profile.to_dict()) for profile in profiles]


@router.post("/swaps/{swap_id}/status", response_model=AuditEntryOut)
async def set_swap_status(
    swap_id: str,
    body: StatusOverride,
    actor: UserProfile = Depends(require_admin),
    services: SwapServices = Depends(get_services),
) -> AuditEntryOut:
    """Override a swap's status. Returns the audit entry written."""
    entry = await services.admin.set_status(actor, swap_id, body.status, body.reason)
    return AuditEntryOut.from_entry(entry)


@router.get("/swaps/{swap_id}/audit", response_model=list[AuditEntryOut])
async def get_audit_trail(
    swap_id: str,
    actor: UserProfile = Depends(require_admin),
    services: SwapServices = Depends(get_services),
) -> list[AuditEntryOut]:
    entries = await services.admin.audit_trail(actor, swap_id)
    return [AuditEntryOut.from_entry(entry) for entry in entries]
