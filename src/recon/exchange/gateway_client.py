"""Backend gateway trade-history client via aiohttp.

Posts the ``{"action": "getMyTrades", "startTime": ...}`` envelope to the
exchange gateway function and unwraps ``{"success": true, "data": [...]}``.
Any transport failure or ``{"success": false, "error": ...}`` answer becomes
a TransientNetworkError so the caller can simply wait for the next cycle.
"""

import asyncio

import aiohttp

from recon.config import ExchangeSettings
from recon.exceptions import TransientNetworkError
from recon.exchange.client import ExchangeClient
from recon.logging import get_logger

logger = get_logger(__name__)


def unwrap_envelope(payload: object) -> list[dict]:
    """Return the data list of a gateway response or raise TransientNetworkError."""
    if not isinstance(payload, dict):
        raise TransientNetworkError("Malformed gateway response")
    if not payload.get("success"):
        raise TransientNetworkError(str(payload.get("error") or "Trade history fetch failed"))
    data = payload.get("data") or []
    if not isinstance(data, list):
        raise TransientNetworkError("Gateway response data is not a list")
    return data


class GatewayTradeClient(ExchangeClient):
    """Trade-history client talking to the backend exchange gateway."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if self._session is not None:
            return
        headers = {"Content-Type": "application/json"}
        token = self._settings.gateway_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self._settings.request_timeout),
        )
        logger.info("gateway_client_connected", url=self._settings.gateway_url)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("gateway_client_closed")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise TransientNetworkError("Gateway session unavailable")
        return self._session

    async def fetch_my_trades(self, start_time: int | None = None) -> list[dict]:
        session = await self._ensure_session()

        body: dict = {"action": "getMyTrades"}
        if start_time is not None:
            body["startTime"] = start_time

        try:
            async with session.post(self._settings.gateway_url, json=body) as response:
                if response.status >= 500:
                    raise TransientNetworkError(f"Gateway returned HTTP {response.status}")
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientNetworkError("Gateway request timeout") from e
        except ValueError as e:
            raise TransientNetworkError("Gateway response is not JSON") from e

        trades = unwrap_envelope(payload)
        logger.debug("gateway_trades_fetched", count=len(trades), start_time=start_time)
        return trades
