"""Alert endpoints: per-user mute flag and manual refresh."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

log = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/alerts/mute/{user_id}")
async def get_mute(user_id: str, request: Request) -> JSONResponse:
    muted = await request.app.state.dispatcher.is_muted(user_id)
    return JSONResponse(content={"user_id": user_id, "muted": muted})


@router.put("/alerts/mute/{user_id}")
async def set_mute(user_id: str, request: Request) -> JSONResponse:
    """Toggle mute. Applies from the next dispatch; nothing is replayed."""
    try:
        body = await request.json()
    except Exception:
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict) or not isinstance(body.get("muted"), bool):
        return JSONResponse(
            content={"error": "Missing required field: muted (bool)"}, status_code=400
        )

    await request.app.state.dispatcher.set_muted(body["muted"], user_id)
    return JSONResponse(content={"user_id": user_id, "muted": body["muted"]})


@router.post("/alerts/refresh")
async def refresh_alerts(request: Request) -> JSONResponse:
    result = await request.app.state.dispatcher.refresh()
    return JSONResponse(
        content={
            "delivered": result.delivered,
            "suppressed": result.suppressed,
            "failed": result.failed,
            "muted": result.muted,
        }
    )
