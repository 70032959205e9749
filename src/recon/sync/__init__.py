"""Trade sync -- incremental, idempotent ingestion of exchange trades into the ledger."""

from recon.sync.worker import SyncResult, TradeSyncWorker, normalize_trade, parse_decimal

__all__ = ["SyncResult", "TradeSyncWorker", "normalize_trade", "parse_decimal"]
