"""Alert delivery channels."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from recon.logging import get_logger
from recon.models import OrderAlert

if TYPE_CHECKING:
    from recon.api.routes.ws import AlertHub

logger = get_logger(__name__)


class Notifier(ABC):
    """Delivers one alert to the operator."""

    @abstractmethod
    async def notify(self, alert: OrderAlert) -> None: ...


class LogNotifier(Notifier):
    """Writes alerts to the structured log. Used when no UI is attached."""

    async def notify(self, alert: OrderAlert) -> None:
        logger.info("order_alert", **alert.to_dict())


class HubNotifier(Notifier):
    """Broadcasts alerts as JSON to every connected WebSocket client."""

    def __init__(self, hub: AlertHub) -> None:
        self._hub = hub

    async def notify(self, alert: OrderAlert) -> None:
        await self._hub.broadcast(json.dumps({"type": "order_alert", "alert": alert.to_dict()}))
