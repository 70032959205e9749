"""Exchange client layer -- trade history via backend gateway (aiohttp) or Binance (ccxt)."""

from recon.exchange.binance_client import BinanceClient
from recon.exchange.client import ExchangeClient
from recon.exchange.gateway_client import GatewayTradeClient, unwrap_envelope

__all__ = ["BinanceClient", "ExchangeClient", "GatewayTradeClient", "unwrap_envelope"]
