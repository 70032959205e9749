"""Trade sync endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from recon.sync import SyncResult

log = structlog.get_logger(__name__)

router = APIRouter()


def _result_to_dict(result: SyncResult | None) -> dict | None:
    if result is None:
        return None
    return {
        "fetched": result.fetched,
        "inserted": result.inserted,
        "enriched": result.enriched,
        "failed_batches": result.failed_batches,
        "cursor": result.cursor,
        "error": result.error,
        "finished_at": result.finished_at,
    }


@router.post("/sync/trades")
async def trigger_trade_sync(request: Request) -> JSONResponse:
    """Run one sync cycle now. 409 if a cycle is already in flight."""
    worker = request.app.state.sync_worker
    result = await worker.run_cycle()
    if result is None:
        return JSONResponse(
            content={"error": "Trade sync already running"}, status_code=409
        )
    log.info("trade_sync_triggered_via_api", inserted=result.inserted)
    return JSONResponse(content=_result_to_dict(result))


@router.get("/sync/status")
async def get_sync_status(request: Request) -> JSONResponse:
    worker = request.app.state.sync_worker
    store = request.app.state.store
    return JSONResponse(
        content={
            "running": worker.is_running,
            "cursor": await store.get_sync_cursor(),
            "trade_count": await store.count_trades(),
            "last_result": _result_to_dict(worker.last_result),
        }
    )
