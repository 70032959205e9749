"""Abstract exchange trade-history client interface.

The sync worker depends only on this interface, keeping transport details
(backend gateway envelope or direct ccxt access) in concrete implementations.
"""

from abc import ABC, abstractmethod


class ExchangeClient(ABC):
    """Abstract base class for trade-history sources."""

    @abstractmethod
    async def connect(self) -> None:
        """Open sessions / load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def fetch_my_trades(self, start_time: int | None = None) -> list[dict]:
        """Fetch our own trade executions at or after start_time (epoch ms).

        Returns raw exchange records with keys: id, orderId, symbol, isBuyer,
        isMaker, qty, price, quoteQty, commission, commissionAsset, time.
        An empty list means nothing new.

        Raises TransientNetworkError when the source is unreachable or
        answers with an error envelope.
        """
        ...
