"""FastAPI application factories.

The collector runs two apps over one HeartbeatService:
    public  read-only: GET /{id}
    admin   write-capable: PUT /{id}, DELETE /{id}

Keeping writes on a separate app lets the admin listener bind to a
private interface while the public one faces callers.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from heartbeat_collector import __version__
from heartbeat_collector.service import (
    HeartbeatNotFound,
    HeartbeatService,
    HeartbeatValidationError,
)
from heartbeat_collector.store import StorageError
from heartbeat_collector.web.routes.heartbeats import admin_router, public_router

logger = logging.getLogger(__name__)


def create_public_app(service: HeartbeatService) -> FastAPI:
    """Create the read-only app."""
    app = FastAPI(title="heartbeat-collector", version=__version__)
    app.state.service = service
    _install_error_handlers(app)
    app.include_router(public_router)
    return app


def create_admin_app(service: HeartbeatService) -> FastAPI:
    """Create the write-capable app."""
    app = FastAPI(title="heartbeat-collector admin", version=__version__)
    app.state.service = service
    _install_error_handlers(app)
    app.include_router(admin_router)
    return app


def _install_error_handlers(app: FastAPI) -> None:
    """Map service errors onto HTTP statuses."""

    @app.exception_handler(HeartbeatValidationError)
    async def on_validation_error(request: Request, exc: HeartbeatValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": exc.message, "field": exc.field},
        )

    @app.exception_handler(RequestValidationError)
    async def on_request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        return JSONResponse(
            status_code=400,
            content={
                "detail": first.get("msg", "Invalid request"),
                "field": ".".join(loc) or None,
            },
        )

    @app.exception_handler(HeartbeatNotFound)
    async def on_not_found(request: Request, exc: HeartbeatNotFound):
        return JSONResponse(status_code=404, content={"detail": "heartbeat not found"})

    @app.exception_handler(StorageError)
    async def on_storage_error(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}",
                     exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "internal storage error"})
