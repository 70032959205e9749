"""FastAPI application factory for the trigger API and the alert WebSocket."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from recon.api.routes import alerts, orders, reconciliation, sync, ws
from recon.api.routes.ws import AlertHub
from recon.exceptions import (
    FindingNotFound,
    PersistenceConflictError,
    ReconciliationDisabled,
    TransientNetworkError,
    ValidationError,
)

log = structlog.get_logger(__name__)

# Most specific first: ReconciliationDisabled is also a ValidationError.
_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (ReconciliationDisabled, 403),
    (ValidationError, 400),
    (FindingNotFound, 404),
    (PersistenceConflictError, 409),
    (TransientNetworkError, 503),
]


async def _handle_engine_error(request: Request, exc: Exception) -> JSONResponse:
    status_code = next(code for cls, code in _ERROR_STATUS if isinstance(exc, cls))
    log.info(
        "api_request_rejected",
        path=request.url.path,
        status_code=status_code,
        error=str(exc),
    )
    return JSONResponse(content={"error": str(exc)}, status_code=status_code)


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application. Components (scanner, review, findings,
        store, sync_worker, dispatcher) are attached to app.state by the caller.
    """
    app = FastAPI(
        title="Ledger Reconciliation Engine",
        lifespan=lifespan,
    )

    app.state.hub = AlertHub()

    for exc_class, _ in _ERROR_STATUS:
        app.add_exception_handler(exc_class, _handle_engine_error)

    app.include_router(reconciliation.router, prefix="/api")
    app.include_router(sync.router, prefix="/api")
    app.include_router(orders.router, prefix="/api")
    app.include_router(alerts.router, prefix="/api")
    app.include_router(ws.router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
