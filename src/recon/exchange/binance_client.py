"""Direct Binance trade-history client via ccxt async.

Binance only serves ``myTrades`` per symbol, so the configured symbols are
queried one by one through ccxt's implicit ``privateGetMyTrades`` endpoint,
which returns the raw exchange records the sync worker normalizes.
"""

import ccxt.async_support as ccxt_async

from recon.config import ExchangeSettings
from recon.exceptions import TransientNetworkError
from recon.exchange.client import ExchangeClient
from recon.logging import get_logger

logger = get_logger(__name__)


class BinanceClient(ExchangeClient):
    """Concrete Binance spot client using ccxt async."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._exchange = ccxt_async.binance(
            {
                "apiKey": settings.api_key.get_secret_value(),
                "secret": settings.api_secret.get_secret_value(),
                "enableRateLimit": True,
                "timeout": int(settings.request_timeout * 1000),
            }
        )

    @property
    def exchange(self) -> ccxt_async.binance:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        logger.info("binance_client_ready", symbols=self._settings.symbols)

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("binance_connection_closed")

    async def fetch_my_trades(self, start_time: int | None = None) -> list[dict]:
        trades: list[dict] = []
        for symbol in self._settings.symbols:
            params: dict = {"symbol": symbol, "limit": 1000}
            if start_time is not None:
                params["startTime"] = start_time
            try:
                batch = await self._exchange.privateGetMyTrades(params)
            except ccxt_async.NetworkError as e:
                raise TransientNetworkError(f"Binance unreachable: {e}") from e
            except ccxt_async.ExchangeError as e:
                raise TransientNetworkError(f"Binance rejected myTrades: {e}") from e
            trades.extend(batch or [])
        logger.debug("binance_trades_fetched", count=len(trades), start_time=start_time)
        return trades
