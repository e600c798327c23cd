"""Heartbeat API routes.

public_router is mounted on the read-only listener, admin_router on the
write-capable one. Both resolve the shared HeartbeatService from app state.
Endpoints are plain functions so store I/O runs in FastAPI's threadpool.
"""

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel

from heartbeat_collector.service import HeartbeatService, RegisterInput

public_router = APIRouter()
admin_router = APIRouter()


def get_service(request: Request) -> HeartbeatService:
    """Dependency: the service injected into the app at creation."""
    return request.app.state.service


class RegisterRequest(BaseModel):
    """Body of a heartbeat registration. Every field is optional."""
    expiry: str | None = None   # ISO-8601 instant
    ttl: str | int | None = None  # "30", "30s", "5m", "2h", "1d"
    label: str | None = None
    metadata: dict[str, str] | None = None


# ── Shared ─────────────────────────────────────────────

@public_router.get("/healthz")
@admin_router.get("/healthz")
def healthz():
    """Liveness of the collector itself."""
    return {"status": "ok"}


# ── Read-only listener ─────────────────────────────────

@public_router.get("/{heartbeat_id}")
def check_heartbeat(
    heartbeat_id: str,
    ttl: str | None = Query(None, description="Validity window, implicit model only"),
    service: HeartbeatService = Depends(get_service),
):
    """Return the heartbeat if it is still valid, 404 otherwise."""
    view = service.evaluate(heartbeat_id, ttl=ttl)
    return view.to_dict()


# ── Write-capable listener ─────────────────────────────

@admin_router.put("/{heartbeat_id}", status_code=204)
def register_heartbeat(
    heartbeat_id: str,
    body: RegisterRequest | None = None,
    expiry: str | None = Query(None, description="ISO-8601 expiry instant"),
    ttl: str | None = Query(None, description="Validity window, e.g. 30s or 5m"),
    label: str | None = Query(None),
    service: HeartbeatService = Depends(get_service),
):
    """Register (or fully replace) a heartbeat.

    Values in the JSON body take precedence over query parameters.
    """
    body = body or RegisterRequest()
    service.register(heartbeat_id, RegisterInput(
        expiry=body.expiry if body.expiry is not None else expiry,
        ttl=body.ttl if body.ttl is not None else ttl,
        label=body.label if body.label is not None else label,
        metadata=body.metadata,
    ))
    return Response(status_code=204)


@admin_router.delete("/{heartbeat_id}", status_code=204)
def purge_heartbeat(
    heartbeat_id: str,
    service: HeartbeatService = Depends(get_service),
):
    """Delete a stored heartbeat."""
    service.purge(heartbeat_id)
    return Response(status_code=204)
