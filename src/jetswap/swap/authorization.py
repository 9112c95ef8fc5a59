"""Wallet/session confirmation step run while a swap is CONFIRMING."""

import asyncio
import logging
from abc import ABC, abstractmethod

from jetswap.errors import AuthorizationError
from jetswap.identity import SessionRegistry
from jetswap.models import SwapIntent

logger = logging.getLogger(__name__)


class Authorizer(ABC):
    """Obtains the user's confirmation for a swap."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def authorize(self, intent: SwapIntent, swap_id: str) -> None:
        """Return once the swap is approved.

        Raises:
            AuthorizationError: If the user or session rejects the swap
        """
        pass


class AutoApproveAuthorizer(Authorizer):
    """Dry-run authorizer: approves every swap after a short delay."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    @property
    def name(self) -> str:
        return "auto"

    async def authorize(self, intent: SwapIntent, swap_id: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        logger.debug(f"Swap {swap_id} auto-approved for {intent.user_id}")


class SessionAuthorizer(Authorizer):
    """Approves swaps only for users holding an active session."""

    def __init__(self, sessions: SessionRegistry):
        self.sessions = sessions

    @property
    def name(self) -> str:
        return "session"

    async def authorize(self, intent: SwapIntent, swap_id: str) -> None:
        if not self.sessions.is_active(intent.user_id):
            raise AuthorizationError(f"No active session for {intent.user_id}")
        logger.debug(f"Swap {swap_id} approved by session of {intent.user_id}")
