"""Concurrency control for swap state transitions.

Provides per-swap locking so that no two transitions for the same swap id run
concurrently. Different swaps never contend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from jetswap.errors import JetSwapError

logger = logging.getLogger(__name__)


class LockTimeoutError(JetSwapError):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class SwapLockRegistry:
    """Registry of ``asyncio.Lock`` objects keyed by swap id.

    Example:
        locks = SwapLockRegistry()
        async with locks.hold(swap_id, operation="relay_result"):
            # read state, validate transition, write state
            ...
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def get_lock(self, swap_id: str) -> asyncio.Lock:
        """Get or create the lock for a swap."""
        lock = self._locks.get(swap_id)
        if lock is None:
            lock = self._locks.setdefault(swap_id, asyncio.Lock())
        return lock

    @asynccontextmanager
    async def hold(self, swap_id: str, operation: str = "transition"):
        """Hold the swap's lock for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired within ``timeout``
        """
        lock = self.get_lock(swap_id)
        try:
            if self.timeout:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            else:
                await lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for swap {swap_id} after {self.timeout}s: {operation}")
            raise LockTimeoutError(
                f"Could not acquire lock for swap {swap_id} within {self.timeout}s"
            )

        logger.debug(f"Lock acquired for swap {swap_id}: {operation}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Lock released for swap {swap_id}: {operation}")

    def is_held(self, swap_id: str) -> bool:
        lock = self._locks.get(swap_id)
        return lock is not None and lock.locked()

    def discard(self, swap_id: str) -> None:
        """Forget an idle lock once its swap is no longer tracked."""
        lock = self._locks.get(swap_id)
        if lock is not None and not lock.locked():
            del self._locks[swap_id]

    def clear(self) -> None:
        """Clear all locks (useful for testing)."""
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._locks)
