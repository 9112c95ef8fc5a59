"""Utility modules for Jet Swap."""

from jetswap.utils.locks import LockTimeoutError, SwapLockRegistry
from jetswap.utils.retry import RetryPolicy, retry_async

__all__ = ["LockTimeoutError", "RetryPolicy", "SwapLockRegistry", "retry_async"]
