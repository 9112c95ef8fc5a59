"""Swap orchestration: state machine, collaborators and wiring."""

from jetswap.swap.admin import AdminService
from jetswap.swap.authorization import Authorizer, AutoApproveAuthorizer, SessionAuthorizer
from jetswap.swap.orchestrator import OrchestratorConfig, SwapOrchestrator, TrackedSwap
from jetswap.swap.relay import DryRunRelay, RelayClient, RelayReceipt, RelayRequest
from jetswap.swap.states import VALID_TRANSITIONS, TransitionGuard

__all__ = [
    "AdminService",
    "Authorizer",
    "AutoApproveAuthorizer",
    "DryRunRelay",
    "OrchestratorConfig",
    "RelayClient",
    "RelayReceipt",
    "RelayRequest",
    "SessionAuthorizer",
    "SwapOrchestrator",
    "TrackedSwap",
    "TransitionGuard",
    "VALID_TRANSITIONS",
]
