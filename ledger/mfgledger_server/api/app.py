"""
FastAPI application factory for the MfgLedger API.

This module creates the FastAPI app with:
- CORS configuration for the frontend
- Ledger store and service lifecycle management
- Ledger API routes under /api/v1
- One exception handler mapping ledger error kinds to status codes
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..clock import Clock
from ..config import LedgerConfig
from ..engine.coordinator import TransactionCoordinator
from ..errors import ConflictError, LedgerError, NotFoundError, TransientFailure
from ..service import LedgerService
from ..store.base import LedgerStore, create_ledger_store
from .routes import router
from .settings import ApiSettings

logger = logging.getLogger(__name__)


def error_status(error: LedgerError) -> int:
    """HTTP status for a ledger error."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, TransientFailure):
        return 503
    if isinstance(error, ConflictError):
        return 409
    return 422


def create_app(
    config: LedgerConfig | None = None,
    settings: ApiSettings | None = None,
    store: LedgerStore | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Engine configuration (loaded from env if omitted)
        settings: HTTP settings (loaded from env if omitted)
        store: Pre-built store, e.g. an in-memory store in tests
        clock: Time source for operations

    Returns:
        Configured FastAPI app; the store opens and closes with its lifespan
    """
    config = config or LedgerConfig.from_env()
    settings = settings or ApiSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage ledger store lifecycle."""
        ledger_store = store or create_ledger_store(config.store)
        coordinator = TransactionCoordinator(ledger_store, config.coordinator)
        app.state.service = LedgerService(ledger_store, coordinator, clock)
        app.state.settings = settings
        logger.info(
            "Ledger API started",
            extra={"store_backend": config.store.backend.value, "version": __version__},
        )

        yield

        await ledger_store.close()

    app = FastAPI(
        title="MfgLedger",
        description="Inventory, production and receivables ledger for manufacturing organizations.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status = error_status(exc)
        headers = None
        if status == 503:
            headers = {"Retry-After": str(settings.retry_after_seconds)}
        return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error",
            extra={"path": request.url.path, "error": str(exc)},
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "error_code": "INTERNAL_ERROR",
                "kind": None,
                "details": {},
            },
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "mfgledger", "version": __version__}

    return app
