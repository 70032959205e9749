"""Order mirror endpoints used by collaborating services."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from recon.models import Order, TradeSide

log = structlog.get_logger(__name__)

router = APIRouter()

_DECIMAL_FIELDS = ("amount", "total_price", "unit_price", "commission")
_OPTIONAL_INT_FIELDS = ("payment_deadline", "expires_at")


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "side": order.side.value,
        "raw_status": order.raw_status,
        "canonical_status": order.canonical_status.value,
        "asset": order.asset,
        "amount": str(order.amount),
        "total_price": str(order.total_price),
        "unit_price": str(order.unit_price),
        "commission": str(order.commission),
        "counterparty": order.counterparty,
        "pay_method": order.pay_method,
        "created_at": order.created_at,
        "payment_deadline": order.payment_deadline,
        "expires_at": order.expires_at,
        "notes": order.notes,
        "updated_at": order.updated_at,
    }


def order_from_body(body: dict) -> Order:
    """Build an Order from a JSON body. Raises ValueError on bad input."""
    for field in ("id", "order_number", "side", "raw_status"):
        if body.get(field) in (None, ""):
            raise ValueError(f"Missing required field: {field}")

    try:
        side = TradeSide(str(body["side"]).upper())
    except ValueError:
        raise ValueError(f"Invalid side: {body['side']}") from None

    decimals: dict[str, Decimal] = {}
    for field in _DECIMAL_FIELDS:
        try:
            decimals[field] = Decimal(str(body.get(field, "0")))
        except InvalidOperation:
            raise ValueError(f"Invalid decimal for {field}: {body.get(field)}") from None

    ints: dict[str, int | None] = {}
    for field in (*_OPTIONAL_INT_FIELDS, "created_at", "updated_at"):
        value = body.get(field)
        try:
            ints[field] = None if value is None else int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid timestamp for {field}: {value}") from None

    return Order(
        id=str(body["id"]),
        order_number=str(body["order_number"]),
        side=side,
        raw_status=str(body["raw_status"]),
        asset=body.get("asset"),
        counterparty=body.get("counterparty"),
        pay_method=body.get("pay_method"),
        notes=body.get("notes"),
        created_at=ints["created_at"] or 0,
        updated_at=ints["updated_at"] or 0,
        payment_deadline=ints["payment_deadline"],
        expires_at=ints["expires_at"],
        **decimals,
    )


@router.post("/orders")
async def upsert_order(request: Request) -> JSONResponse:
    """Insert or update an order mirror row."""
    try:
        body = await request.json()
    except Exception:
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse(content={"error": "Body must be a JSON object"}, status_code=400)

    try:
        order = order_from_body(body)
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)

    await request.app.state.store.upsert_order(order)
    log.info("order_upserted", order_id=order.id, raw_status=order.raw_status)
    return JSONResponse(content=order_to_dict(order))


@router.get("/orders")
async def list_orders(request: Request, since_ms: int | None = None) -> JSONResponse:
    orders = await request.app.state.store.get_orders(since_ms=since_ms)
    return JSONResponse(content=[order_to_dict(o) for o in orders])


@router.post("/orders/{order_id}/attended")
async def mark_order_attended(order_id: str, request: Request) -> JSONResponse:
    order = await request.app.state.store.get_order(order_id)
    if order is None:
        return JSONResponse(content={"error": "Order not found"}, status_code=404)
    request.app.state.dispatcher.mark_attended(order)
    return JSONResponse(content={"order_id": order_id, "attended": True})
