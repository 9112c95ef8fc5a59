"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jetswap.errors import (
    AdminOverrideConflict,
    CancellationRejected,
    JetSwapError,
    LedgerPermissionDenied,
    LedgerUnavailable,
    SwapNotFound,
    ValidationError,
)
from jetswap.swap.factory import SwapServices, build_services
from jetswap.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)

# Checked in order; first matching class wins
ERROR_STATUS_CODES: list[tuple[type[JetSwapError], int]] = [
    (ValidationError, 400),
    (SwapNotFound, 404),
    (AdminOverrideConflict, 409),
    (CancellationRejected, 409),
    (LedgerPermissionDenied, 403),
    (LedgerUnavailable, 503),
    (LockTimeoutError, 503),
]


def status_code_for(error: JetSwapError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


async def handle_swap_error(request: Request, exc: JetSwapError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: SwapServices = app.state.services
    # Startup
    await services.start()
    yield
    # Shutdown
    await services.stop()


def create_app(services: Optional[SwapServices] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    services = services or build_services()
    settings = services.settings

    app = FastAPI(
        title="Jet Swap API",
        description="Cross-chain swap orchestration and settlement API",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(JetSwapError, handle_swap_error)

    # Register routes
    from jetswap.api.routers import admin, health, sessions, swaps

    app.include_router(health.router, tags=["Health"])
    app.include_router(swaps.router, prefix="/api/v1", tags=["Swaps"])
    app.include_router(sessions.router, prefix="/api/v1", tags=["Sessions"])
    app.include_router(admin.router, tags=["Admin"])

    return app
