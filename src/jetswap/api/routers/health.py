"""Health check endpoints."""

from fastapi import APIRouter, Depends

from jetswap.api.deps import get_services
from jetswap.swap.factory import SwapServices

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "jetswap"}


@router.get("/health/detailed")
async def detailed_health(services: SwapServices = Depends(get_services)):
    """Detailed health check with configuration info."""
    return {
        "status": "healthy",
        "service": "jetswap",
        "version": "0.1.0",
        "ledger": services.ledger.name,
        "tracked_swaps": len(services.orchestrator),
        "config": services.settings.get_safe_dict(),
    }
