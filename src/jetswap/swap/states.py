"""Swap state machine.

    IDLE
     │
     ▼
    CONFIRMING ───────────────────────► FAILED
     │                                    ▲
     ▼                                    │
    LOCKED_PENDING_RELAY ─────────────────┤
     │                                    │
     ▼                                    │
    RELAYING ──────► FLAGGED ─────────────┤ (admin only)
     │                  │                 │
     ▼                  ▼ (admin only)    │
    SETTLED_SUCCESS ◄───┘                 │

Terminal records never change on the automatic path; administrative
overrides are checked separately by ``TransitionGuard.can_override``.
"""

import logging

from jetswap.models import SwapStatus

logger = logging.getLogger(__name__)


# Moves the orchestrator may make on its own
VALID_TRANSITIONS: dict[SwapStatus, frozenset[SwapStatus]] = {
    SwapStatus.IDLE: frozenset({
        SwapStatus.CONFIRMING,
        SwapStatus.FAILED,
        SwapStatus.FLAGGED,
    }),
    SwapStatus.CONFIRMING: frozenset({
        SwapStatus.LOCKED_PENDING_RELAY,
        SwapStatus.FAILED,
        SwapStatus.FLAGGED,
    }),
    SwapStatus.LOCKED_PENDING_RELAY: frozenset({
        SwapStatus.RELAYING,
        SwapStatus.FLAGGED,
    }),
    SwapStatus.RELAYING: frozenset({
        SwapStatus.SETTLED_SUCCESS,
        SwapStatus.FAILED,
        SwapStatus.FLAGGED,
    }),
    # Terminal: no automatic transitions out
    SwapStatus.SETTLED_SUCCESS: frozenset(),
    SwapStatus.FAILED: frozenset(),
    SwapStatus.FLAGGED: frozenset(),
}

# Targets an administrator may set
ADMIN_TARGETS: frozenset[SwapStatus] = frozenset({
    SwapStatus.SETTLED_SUCCESS,
    SwapStatus.FAILED,
    SwapStatus.FLAGGED,
})

# States in which the user may still back out
CANCELLABLE: frozenset[SwapStatus] = frozenset({
    SwapStatus.IDLE,
    SwapStatus.CONFIRMING,
})


class TransitionGuard:
    """Decides whether a status change is allowed and why not."""

    @staticmethod
    def can_transition(from_state: SwapStatus, to_state: SwapStatus) -> tuple[bool, str]:
        """Check an automatic transition.

        Returns:
            Tuple of (allowed, denial_reason)
        """
        if from_state.is_terminal:
            return False, f"{from_state.value} is terminal"
        if to_state not in VALID_TRANSITIONS[from_state]:
            return False, f"{from_state.value} -> {to_state.value} is not a valid transition"
        return True, ""

    @staticmethod
    def can_override(from_state: SwapStatus, to_state: SwapStatus) -> tuple[bool, str]:
        """Check an administrative override."""
        if to_state not in ADMIN_TARGETS:
            return False, f"administrators cannot set {to_state.value}"
        if from_state.is_final:
            return False, f"record is already {from_state.value}"
        if from_state is SwapStatus.FLAGGED and to_state is SwapStatus.FLAGGED:
            return False, "record is already flagged"
        return True, ""

    @staticmethod
    def can_cancel(state: SwapStatus) -> bool:
        """Only swaps that have not reached the custody lock may be cancelled."""
        return state in CANCELLABLE
