"""Incremental trade sync from the exchange trade-history API into the ledger.

Each cycle:
  1. CURSOR: newest committed exchange trade time + 1 ms, or an older held
     low-water mark, read from the store
  2. FETCH: trade history from the cursor onwards
  3. NORMALIZE: raw records -> TradeRecord (lenient numeric parsing)
  4. ENRICH: terminal-sourced rows of the same exchange order get their
     corrective fields instead of a duplicate insert
  5. UPSERT: fixed-size batches, duplicates on (external_trade_id, symbol) ignored

The cursor is never carried in memory between cycles. A batch that fails is
skipped and the oldest trade time in it is held as a low-water mark in the
settings table, so the next cursor cannot pass it even when later batches
commit. The mark is released after a cycle that starts at or below it and
commits every batch; re-fetched newer rows are ignored by the upsert.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from recon.data.store import LedgerStore
from recon.exceptions import TransientNetworkError
from recon.exchange.client import ExchangeClient
from recon.logging import get_logger, log_context
from recon.models import TradeRecord, TradeSide, TradeSource

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 50


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    fetched: int = 0
    inserted: int = 0
    enriched: int = 0
    failed_batches: int = 0
    cursor: int | None = None
    error: str | None = None
    finished_at: float = 0.0


def parse_decimal(value: object) -> Decimal:
    """Parse an exchange numeric field, falling back to zero on garbage."""
    if value is None or value == "":
        return Decimal("0")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def _parse_bool(value: object) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def normalize_trade(raw: dict) -> TradeRecord:
    """Convert one raw exchange trade into a ledger TradeRecord."""
    is_buyer = _parse_bool(raw.get("isBuyer"))
    order_id = raw.get("orderId")
    try:
        executed_at = int(raw.get("time") or 0)
    except (TypeError, ValueError):
        executed_at = 0
    return TradeRecord(
        external_trade_id=str(raw["id"]),
        external_order_id=str(order_id) if order_id is not None else None,
        symbol=str(raw["symbol"]),
        side=TradeSide.BUY if is_buyer else TradeSide.SELL,
        quantity=parse_decimal(raw.get("qty")),
        price=parse_decimal(raw.get("price")),
        quote_quantity=parse_decimal(raw.get("quoteQty")),
        commission=parse_decimal(raw.get("commission")),
        commission_asset=raw.get("commissionAsset") or None,
        is_maker=_parse_bool(raw.get("isMaker")),
        executed_at=executed_at,
        source=TradeSource.EXCHANGE_API,
    )


class TradeSyncWorker:
    """Periodic, non-reentrant ingester of exchange trades.

    Overlapping calls to run_cycle() while one is in flight return None
    immediately; they are dropped, not queued.

    Args:
        exchange: Trade-history source.
        store: Ledger store.
        batch_size: Rows per upsert batch.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        store: LedgerStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._exchange = exchange
        self._store = store
        self._batch_size = max(1, batch_size)
        self._running = False
        self._cycles = 0
        self._last_result: SyncResult | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    async def run_cycle(self) -> SyncResult | None:
        """Run one sync cycle unless another is already in progress."""
        if self._running:
            logger.debug("trade_sync_overlap_dropped")
            return None

        self._running = True
        self._cycles += 1
        try:
            with log_context(cycle=self._cycles):
                result = await self._sync()
        finally:
            self._running = False

        result.finished_at = time.time()
        self._last_result = result
        return result

    async def _sync(self) -> SyncResult:
        cursor = await self._store.get_sync_cursor()
        held = await self._store.get_sync_low_water()
        result = SyncResult(cursor=cursor)

        try:
            raw_trades = await self._exchange.fetch_my_trades(start_time=cursor)
        except TransientNetworkError as e:
            logger.warning("trade_sync_fetch_failed", cursor=cursor, error=str(e))
            result.error = str(e)
            return result

        result.fetched = len(raw_trades)
        if not raw_trades:
            logger.debug("trade_sync_nothing_new", cursor=cursor)
            if held is not None:
                await self._store.release_sync_cursor()
            return result

        records: list[TradeRecord] = []
        for raw in raw_trades:
            try:
                records.append(normalize_trade(raw))
            except KeyError as e:
                logger.warning("trade_sync_record_skipped", missing_field=str(e))

        records, result.enriched = await self._enrich_terminal_trades(records)
        records.sort(key=lambda r: (r.executed_at, r.symbol, r.external_trade_id or ""))

        for start in range(0, len(records), self._batch_size):
            batch = records[start : start + self._batch_size]
            try:
                result.inserted += await self._store.insert_trades(batch)
            except Exception:
                result.failed_batches += 1
                logger.error(
                    "trade_sync_batch_failed",
                    batch_index=start // self._batch_size,
                    batch_size=len(batch),
                    exc_info=True,
                )
                await self._hold_cursor(batch[0].executed_at)

        if held is not None and not result.failed_batches:
            await self._store.release_sync_cursor()

        result.cursor = await self._store.get_sync_cursor()
        logger.info(
            "trade_sync_complete",
            fetched=result.fetched,
            inserted=result.inserted,
            enriched=result.enriched,
            failed_batches=result.failed_batches,
            cursor=result.cursor,
        )
        return result

    async def _hold_cursor(self, executed_at: int) -> None:
        try:
            await self._store.hold_sync_cursor(executed_at)
        except Exception:
            logger.error("trade_sync_hold_failed", low_water=executed_at, exc_info=True)

    async def _enrich_terminal_trades(
        self, records: list[TradeRecord]
    ) -> tuple[list[TradeRecord], int]:
        """Fold fills of terminal-placed orders into their existing ledger rows.

        Returns the records still to insert and the number of orders enriched.
        """
        order_ids = sorted({r.external_order_id for r in records if r.external_order_id})
        terminal_orders = await self._store.get_terminal_order_ids(order_ids)
        if not terminal_orders:
            return records, 0

        enriched = 0
        for order_id in sorted(terminal_orders):
            fills = [r for r in records if r.external_order_id == order_id]
            if not fills:
                continue
            first = fills[0]
            commission = sum((f.commission for f in fills), Decimal("0"))
            commission_asset = next(
                (f.commission_asset for f in fills if f.commission_asset), None
            )
            try:
                await self._store.enrich_terminal_trade(
                    external_order_id=order_id,
                    external_trade_id=first.external_trade_id or "",
                    commission=commission,
                    commission_asset=commission_asset,
                    is_maker=first.is_maker,
                )
            except Exception:
                logger.error("terminal_enrichment_failed", order_id=order_id, exc_info=True)
                continue
            enriched += 1

        remaining = [r for r in records if r.external_order_id not in terminal_orders]
        return remaining, enriched
