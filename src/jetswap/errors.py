"""Exception taxonomy for the swap core.

Validation and authorization errors surface to the caller that initiated the
swap. Ledger and relay errors are retried internally and only become visible
as a terminal swap status once the retry policy is exhausted.
"""

from typing import Optional


class JetSwapError(Exception):
    """Base class for all swap core errors."""

    pass


# Intent / quote errors (raised before any state exists)


class ValidationError(JetSwapError):
    """Swap intent rejected before any state change."""

    pass


class InvalidAmount(ValidationError):
    """Amount is non-numeric, non-finite or not strictly positive."""

    pass


class UnsupportedPair(ValidationError):
    """Chain or token is not supported."""

    pass


class QuoteExpired(ValidationError):
    """A caller-supplied quote is past its validity window."""

    pass


# Orchestration errors


class AuthorizationError(JetSwapError):
    """Wallet/session confirmation was rejected."""

    pass


class EncryptionError(JetSwapError):
    """Payload serialization, cipher or key escrow failed."""

    pass


class SwapNotFound(JetSwapError):
    """No swap with the given id."""

    pass


class CancellationRejected(JetSwapError):
    """Cancel requested after custody lock."""

    pass


class AdminOverrideConflict(JetSwapError):
    """Administrative override attempted from a state that disallows it."""

    pass


# Relay errors


class RelayFailure(JetSwapError):
    """Cross-chain relay attempt failed.

    ``definitive`` is True only when the relay provider guarantees that no
    funds moved; everything else is treated as ambiguous.
    """

    def __init__(self, message: str, definitive: bool = False):
        super().__init__(message)
        self.definitive = definitive


class RelayTimeout(RelayFailure):
    """Relay did not confirm before its deadline."""

    def __init__(self, message: str):
        super().__init__(message, definitive=False)


# Ledger errors


class LedgerError(JetSwapError):
    """Base class for Ledger Record Store failures."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class LedgerUnavailable(LedgerError):
    """Transient failure; safe to retry."""

    pass


class LedgerPermissionDenied(LedgerError):
    """Caller lacks permission; never retried."""

    pass


class LedgerNotFound(LedgerError):
    """Addressed document does not exist."""

    pass
