"""Async SQLite database manager for the trade ledger and reconciliation state.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.
"""

import os
from typing import Self

import aiosqlite

from recon.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_trade_id TEXT,
    external_order_id TEXT,
    symbol TEXT NOT NULL,
    side TEXT NOT NULL,
    quantity TEXT NOT NULL,
    price TEXT NOT NULL,
    quote_quantity TEXT NOT NULL,
    commission TEXT NOT NULL,
    commission_asset TEXT,
    is_maker INTEGER,
    executed_at INTEGER NOT NULL,
    source TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    order_number TEXT NOT NULL UNIQUE,
    side TEXT NOT NULL,
    raw_status TEXT NOT NULL,
    asset TEXT,
    amount TEXT NOT NULL,
    total_price TEXT NOT NULL,
    unit_price TEXT NOT NULL,
    commission TEXT NOT NULL,
    counterparty TEXT,
    pay_method TEXT,
    created_at INTEGER NOT NULL,
    payment_deadline INTEGER,
    expires_at INTEGER,
    notes TEXT,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS book_entries (
    id TEXT PRIMARY KEY,
    order_number TEXT NOT NULL,
    entry_type TEXT NOT NULL,
    booked_amount TEXT NOT NULL,
    booked_fee TEXT NOT NULL DEFAULT '0',
    quantity TEXT NOT NULL DEFAULT '0',
    sync_status TEXT NOT NULL DEFAULT 'approved',
    synced_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS conversions (
    id TEXT PRIMARY KEY,
    trade_id INTEGER,
    asset TEXT NOT NULL,
    side TEXT NOT NULL,
    quantity TEXT NOT NULL,
    price TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'sync',
    status TEXT NOT NULL DEFAULT 'pending_approval',
    reference_no TEXT
);

CREATE TABLE IF NOT EXISTS wallet_balances (
    wallet_id TEXT NOT NULL,
    asset TEXT NOT NULL,
    balance TEXT NOT NULL,
    PRIMARY KEY (wallet_id, asset)
);

CREATE TABLE IF NOT EXISTS payment_methods (
    name TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS asset_movements (
    id TEXT PRIMARY KEY,
    movement_type TEXT NOT NULL,
    asset TEXT NOT NULL,
    amount TEXT NOT NULL,
    fee TEXT NOT NULL DEFAULT '0',
    status TEXT NOT NULL,
    tx_id TEXT,
    network TEXT,
    movement_time INTEGER NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS findings (
    id TEXT PRIMARY KEY,
    scan_id TEXT NOT NULL,
    category TEXT NOT NULL,
    severity TEXT NOT NULL,
    finding_type TEXT NOT NULL,
    asset TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    exchange_ref TEXT,
    ledger_ref TEXT,
    exchange_amount TEXT,
    ledger_amount TEXT,
    variance TEXT,
    suggested_action TEXT,
    confidence TEXT,
    reasoning TEXT NOT NULL DEFAULT '',
    details TEXT NOT NULL DEFAULT '{}',
    fingerprint TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    feedback_at INTEGER,
    feedback_note TEXT
);

CREATE TABLE IF NOT EXISTS scan_log (
    id TEXT PRIMARY KEY,
    started_at INTEGER NOT NULL,
    finished_at INTEGER NOT NULL,
    scope TEXT NOT NULL,
    findings_count INTEGER NOT NULL,
    critical_count INTEGER NOT NULL,
    warning_count INTEGER NOT NULL DEFAULT 0,
    review_count INTEGER NOT NULL DEFAULT 0,
    info_count INTEGER NOT NULL DEFAULT 0,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    triggered_by TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    CHECK (started_at <= finished_at)
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_trades_external_symbol
    ON trades(external_trade_id, symbol);

CREATE INDEX IF NOT EXISTS idx_trades_executed_at
    ON trades(executed_at);

CREATE INDEX IF NOT EXISTS idx_trades_order
    ON trades(external_order_id);

CREATE INDEX IF NOT EXISTS idx_orders_created_at
    ON orders(created_at);

CREATE INDEX IF NOT EXISTS idx_book_entries_order
    ON book_entries(order_number);

CREATE INDEX IF NOT EXISTS idx_asset_movements_type_status
    ON asset_movements(movement_type, status);

CREATE INDEX IF NOT EXISTS idx_findings_status
    ON findings(status);

CREATE INDEX IF NOT EXISTS idx_findings_fingerprint
    ON findings(fingerprint);
"""


class LedgerDatabase:
    """Async SQLite connection manager for the ledger.

    Manages database lifecycle including schema creation, WAL mode
    configuration, and clean resource cleanup.

    Usage:
        async with LedgerDatabase("/path/to/ledger.db") as db:
            await db.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/ledger.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open database connection, configure pragmas, and create schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._create_tables()
        await self._ensure_schema_version()

        logger.info("ledger_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("ledger_db_closed", db_path=self._db_path)

    async def _create_tables(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.commit()

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self._connection.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
