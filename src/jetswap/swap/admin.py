"""Administrative oversight of swap records."""

import logging
from typing import Union

from jetswap.errors import LedgerPermissionDenied
from jetswap.identity import UserProfile
from jetswap.ledger.store import LedgerStore
from jetswap.models import AuditEntry, SwapRecord, SwapStatus
from jetswap.swap.orchestrator import SwapOrchestrator

logger = logging.getLogger(__name__)


class AdminService:
    """Dashboard operations restricted to admin profiles."""

    def __init__(self, store: LedgerStore, orchestrator: SwapOrchestrator):
        self.store = store
        self.orchestrator = orchestrator

    @staticmethod
    def _require_admin(actor: UserProfile, operation: str) -> None:
        if not actor.is_admin:
            logger.warning(f"Denied {operation} to non-admin {actor.id}")
            raise LedgerPermissionDenied(f"{operation} requires the admin role")

    async def list_swaps(self, actor: UserProfile, limit: int = 200) -> list[SwapRecord]:
        """Swap records across all users, newest first."""
        self._require_admin(actor, "list_swaps")
        return await self.store.list_all(limit)

    async def list_users(self, actor: UserProfile, limit: int = 100) -> list[UserProfile]:
        self._require_admin(actor, "list_users")
        return await self.store.list_profiles(limit)

    async def set_status(
        self,
        actor: UserProfile,
        swap_id: str,
        status: Union[SwapStatus, str],
        reason: str = "",
    ) -> AuditEntry:
        """Override a swap's status; recorded in the audit trail."""
        self._require_admin(actor, "set_status")
        return await self.orchestrator.admin_set_status(swap_id, status, actor.id, reason)

    async def audit_trail(self, actor: UserProfile, swap_id: str) -> list[AuditEntry]:
        self._require_admin(actor, "audit_trail")
        return await self.store.list_audit(swap_id)
