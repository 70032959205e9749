"""Reconciliation endpoints: trigger scans, list findings, record operator feedback."""

from __future__ import annotations

from decimal import Decimal

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from recon.models import FindingStatus, ReconciliationFinding, ScanLogEntry

log = structlog.get_logger(__name__)

router = APIRouter()


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def finding_to_dict(f: ReconciliationFinding) -> dict:
    return {
        "id": f.id,
        "scan_id": f.scan_id,
        "category": f.category,
        "severity": f.severity.value,
        "finding_type": f.finding_type,
        "asset": f.asset,
        "status": f.status.value,
        "exchange_ref": f.exchange_ref,
        "ledger_ref": f.ledger_ref,
        "exchange_amount": _dec(f.exchange_amount),
        "ledger_amount": _dec(f.ledger_amount),
        "variance": _dec(f.variance),
        "suggested_action": f.suggested_action,
        "confidence": _dec(f.confidence),
        "reasoning": f.reasoning,
        "details": f.details,
        "created_at": f.created_at,
        "feedback_at": f.feedback_at,
        "feedback_note": f.feedback_note,
    }


def scan_log_to_dict(entry: ScanLogEntry) -> dict:
    return {
        "id": entry.id,
        "started_at": entry.started_at,
        "finished_at": entry.finished_at,
        "scope": entry.scope,
        "findings_count": entry.findings_count,
        "critical_count": entry.critical_count,
        "warning_count": entry.warning_count,
        "review_count": entry.review_count,
        "info_count": entry.info_count,
        "duration_ms": entry.duration_ms,
        "triggered_by": entry.triggered_by,
        "summary": entry.summary,
    }


@router.post("/reconciliation/scan")
async def trigger_scan(request: Request) -> JSONResponse:
    """Run a reconciliation scan.

    Optional JSON body: {"scope": ["all"], "triggered_by": "operator"}.
    """
    body: dict = {}
    raw = await request.body()
    if raw:
        try:
            body = await request.json()
        except Exception:
            return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse(content={"error": "Body must be a JSON object"}, status_code=400)

    scope = body.get("scope", ["all"])
    if isinstance(scope, str):
        scope = [scope]
    if not isinstance(scope, list) or not all(isinstance(s, str) for s in scope):
        return JSONResponse(
            content={"error": "scope must be a list of strings"}, status_code=400
        )
    triggered_by = str(body.get("triggered_by") or "system")

    scanner = request.app.state.scanner
    result = await scanner.scan(scope=scope, triggered_by=triggered_by)
    log.info("scan_triggered_via_api", scan_id=result.scan_id, triggered_by=triggered_by)
    return JSONResponse(content=result.to_dict())


@router.get("/reconciliation/findings")
async def list_findings(request: Request, status: str | None = None) -> JSONResponse:
    filter_status = None
    if status:
        try:
            filter_status = FindingStatus(status)
        except ValueError:
            return JSONResponse(
                content={"error": f"Unknown status: {status}"}, status_code=400
            )
    findings = await request.app.state.review.list_findings(status=filter_status)
    return JSONResponse(content=[finding_to_dict(f) for f in findings])


@router.get("/reconciliation/summary")
async def get_summary(request: Request) -> JSONResponse:
    summary = await request.app.state.review.get_summary()
    return JSONResponse(content=summary.to_dict())


@router.post("/reconciliation/findings/{finding_id}/feedback")
async def submit_feedback(finding_id: str, request: Request) -> JSONResponse:
    """Acknowledge or resolve an open finding.

    JSON body: {"status": "acknowledged" | "resolved", "note": "..."}.
    """
    try:
        body = await request.json()
    except Exception:
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict) or "status" not in body:
        return JSONResponse(
            content={"error": "Missing required field: status"}, status_code=400
        )

    try:
        status = FindingStatus(body["status"])
    except ValueError:
        return JSONResponse(
            content={"error": f"Unknown status: {body['status']}"}, status_code=400
        )
    note = body.get("note")

    finding = await request.app.state.review.review(finding_id, status, note)
    return JSONResponse(content=finding_to_dict(finding))


@router.get("/reconciliation/scans")
async def list_scans(request: Request, limit: int = 50) -> JSONResponse:
    entries = await request.app.state.findings.get_scan_log(limit=max(1, min(limit, 500)))
    return JSONResponse(content=[scan_log_to_dict(e) for e in entries])
