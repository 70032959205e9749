"""WebSocket hub for real-time order alert broadcast."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

log = structlog.get_logger(__name__)

router = APIRouter()


class AlertHub:
    """Manages WebSocket connections and broadcasts alert messages to all clients."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.connections.append(ws)
        log.info("alerts_ws_connected", total=len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("alerts_ws_disconnected", total=len(self.connections))

    async def broadcast(self, message: str) -> None:
        """Send a message to all connected clients, dropping broken connections."""
        for ws in self.connections.copy():
            try:
                await ws.send_text(message)
            except Exception:
                self.connections.remove(ws)
                log.warning("alerts_ws_broadcast_error", remaining=len(self.connections))


@router.websocket("/ws/alerts")
async def alerts_websocket(websocket: WebSocket) -> None:
    """Alert stream. Any text received from the client counts as a refocus."""
    hub: AlertHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
            dispatcher = getattr(websocket.app.state, "dispatcher", None)
            if dispatcher is not None:
                await dispatcher.refresh()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
