"""Typed SQLite read/write abstraction for the trade ledger.

Provides LedgerStore with typed methods for trades, orders, booked entries,
conversions, wallet balances, payment methods, asset movements and the
key/value settings table. All SQL is isolated behind this interface.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
"""

import sqlite3
import time
from decimal import Decimal

from recon.data.database import LedgerDatabase
from recon.exceptions import PersistenceConflictError
from recon.logging import get_logger
from recon.models import Order, TradeRecord, TradeSide, TradeSource

logger = get_logger(__name__)

SYNC_LOW_WATER_KEY = "trade_sync_low_water_ms"

_TRADE_COLUMNS = (
    "id, external_trade_id, external_order_id, symbol, side, quantity, price, "
    "quote_quantity, commission, commission_asset, is_maker, executed_at, source"
)

_ORDER_COLUMNS = (
    "id, order_number, side, raw_status, asset, amount, total_price, unit_price, "
    "commission, counterparty, pay_method, created_at, payment_deadline, "
    "expires_at, notes, updated_at"
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _bool_or_none(value: int | None) -> bool | None:
    return None if value is None else bool(value)


def _row_to_trade(row: tuple) -> TradeRecord:
    return TradeRecord(
        id=row[0],
        external_trade_id=row[1],
        external_order_id=row[2],
        symbol=row[3],
        side=TradeSide(row[4]),
        quantity=Decimal(row[5]),
        price=Decimal(row[6]),
        quote_quantity=Decimal(row[7]),
        commission=Decimal(row[8]),
        commission_asset=row[9],
        is_maker=_bool_or_none(row[10]),
        executed_at=row[11],
        source=TradeSource(row[12]),
    )


def _row_to_order(row: tuple) -> Order:
    return Order(
        id=row[0],
        order_number=row[1],
        side=TradeSide(row[2]),
        raw_status=row[3],
        asset=row[4],
        amount=Decimal(row[5]),
        total_price=Decimal(row[6]),
        unit_price=Decimal(row[7]),
        commission=Decimal(row[8]),
        counterparty=row[9],
        pay_method=row[10],
        created_at=row[11],
        payment_deadline=row[12],
        expires_at=row[13],
        notes=row[14],
        updated_at=row[15],
    )


class LedgerStore:
    """Async SQLite store for the trade ledger and its companion tables.

    Usage:
        async with LedgerDatabase("data/ledger.db") as database:
            store = LedgerStore(database)
            inserted = await store.insert_trades(records)
    """

    def __init__(self, database: LedgerDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Trades
    # ──────────────────────────────────────────────

    async def insert_trades(self, trades: list[TradeRecord]) -> int:
        """Insert one batch of trades, ignoring (external_trade_id, symbol) duplicates.

        The batch commits atomically. On any database error the batch is
        rolled back and the error re-raised for the caller to handle.
        Returns the number of actually inserted rows.
        """
        if not trades:
            return 0

        now_ms = _now_ms()
        data = [
            (
                t.external_trade_id,
                t.external_order_id,
                t.symbol,
                t.side.value,
                str(t.quantity),
                str(t.price),
                str(t.quote_quantity),
                str(t.commission),
                t.commission_asset,
                None if t.is_maker is None else int(t.is_maker),
                t.executed_at,
                t.source.value,
                now_ms,
            )
            for t in trades
        ]

        db = self._database.db
        try:
            cursor = await db.executemany(
                "INSERT INTO trades "
                "(external_trade_id, external_order_id, symbol, side, quantity, price, "
                "quote_quantity, commission, commission_asset, is_maker, executed_at, "
                "source, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(external_trade_id, symbol) DO NOTHING",
                data,
            )
            await db.commit()
        except sqlite3.Error:
            await db.rollback()
            raise

        inserted = cursor.rowcount
        logger.debug("inserted_trades", total=len(trades), inserted=inserted)
        return inserted

    async def get_sync_cursor(self) -> int | None:
        """Resume cursor: newest committed exchange trade time plus one millisecond.

        Rows without an external trade id (unenriched terminal trades) do not
        count. A held low-water mark pulls the cursor back to the oldest row
        of a batch that failed to commit. Returns None for an empty ledger
        with no mark.
        """
        cursor = await self._database.db.execute(
            "SELECT MAX(executed_at) FROM trades WHERE external_trade_id IS NOT NULL"
        )
        latest = (await cursor.fetchone())[0]
        held = await self.get_sync_low_water()
        if latest is None:
            return held
        resume = int(latest) + 1
        return resume if held is None else min(resume, held)

    async def get_sync_low_water(self) -> int | None:
        value = await self.get_setting(SYNC_LOW_WATER_KEY)
        return int(value) if value is not None else None

    async def hold_sync_cursor(self, executed_at: int) -> None:
        """Keep the cursor at or below executed_at until release_sync_cursor()."""
        held = await self.get_sync_low_water()
        if held is None or executed_at < held:
            await self.set_setting(SYNC_LOW_WATER_KEY, str(executed_at))
            logger.info("sync_cursor_held", low_water=executed_at)

    async def release_sync_cursor(self) -> None:
        db = self._database.db
        cursor = await db.execute("DELETE FROM settings WHERE key = ?", (SYNC_LOW_WATER_KEY,))
        await db.commit()
        if cursor.rowcount:
            logger.info("sync_cursor_released")

    async def count_trades(self) -> int:
        cursor = await self._database.db.execute("SELECT COUNT(*) FROM trades")
        return (await cursor.fetchone())[0]

    async def get_trades(self, since_ms: int | None = None) -> list[TradeRecord]:
        """Query ledger trades, optionally from a timestamp, ordered by time ASC."""
        query = f"SELECT {_TRADE_COLUMNS} FROM trades"
        params: list = []
        if since_ms is not None:
            query += " WHERE executed_at >= ?"
            params.append(since_ms)
        query += " ORDER BY executed_at ASC, id ASC"
        cursor = await self._database.db.execute(query, params)
        return [_row_to_trade(row) for row in await cursor.fetchall()]

    async def get_trade_ids(self) -> set[int]:
        cursor = await self._database.db.execute("SELECT id FROM trades")
        return {row[0] for row in await cursor.fetchall()}

    async def get_terminal_order_ids(self, order_ids: list[str]) -> set[str]:
        """Return which of the given exchange order ids have terminal-sourced rows."""
        if not order_ids:
            return set()
        placeholders = ", ".join("?" for _ in order_ids)
        cursor = await self._database.db.execute(
            f"SELECT DISTINCT external_order_id FROM trades "
            f"WHERE source = ? AND external_order_id IN ({placeholders})",
            [TradeSource.TERMINAL.value, *order_ids],
        )
        return {row[0] for row in await cursor.fetchall()}

    async def enrich_terminal_trade(
        self,
        external_order_id: str,
        external_trade_id: str,
        commission: Decimal,
        commission_asset: str | None,
        is_maker: bool | None,
    ) -> int:
        """Fill corrective fields on terminal-sourced rows of one exchange order.

        Commission fields go on every terminal row of the order; the exchange
        trade id only on the first, since (external_trade_id, symbol) is unique.
        Returns the number of rows touched.
        """
        db = self._database.db
        try:
            cursor = await db.execute(
                "UPDATE trades SET commission = ?, commission_asset = ?, is_maker = ? "
                "WHERE external_order_id = ? AND source = ?",
                (
                    str(commission),
                    commission_asset,
                    None if is_maker is None else int(is_maker),
                    external_order_id,
                    TradeSource.TERMINAL.value,
                ),
            )
            touched = cursor.rowcount
            await db.execute(
                "UPDATE trades SET external_trade_id = ? "
                "WHERE id = (SELECT MIN(id) FROM trades "
                "WHERE external_order_id = ? AND source = ?) "
                "AND external_trade_id IS NULL",
                (external_trade_id, external_order_id, TradeSource.TERMINAL.value),
            )
            await db.commit()
        except sqlite3.Error:
            await db.rollback()
            raise
        return touched

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    async def upsert_order(self, order: Order) -> None:
        """Insert or update an order keyed by id."""
        db = self._database.db
        await db.execute(
            f"INSERT INTO orders ({_ORDER_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET "
            "raw_status = excluded.raw_status, asset = excluded.asset, "
            "amount = excluded.amount, total_price = excluded.total_price, "
            "unit_price = excluded.unit_price, commission = excluded.commission, "
            "counterparty = excluded.counterparty, pay_method = excluded.pay_method, "
            "payment_deadline = excluded.payment_deadline, "
            "expires_at = excluded.expires_at, notes = excluded.notes, "
            "updated_at = excluded.updated_at",
            (
                order.id,
                order.order_number,
                order.side.value,
                order.raw_status,
                order.asset,
                str(order.amount),
                str(order.total_price),
                str(order.unit_price),
                str(order.commission),
                order.counterparty,
                order.pay_method,
                order.created_at,
                order.payment_deadline,
                order.expires_at,
                order.notes,
                order.updated_at or _now_ms(),
            ),
        )
        await db.commit()

    async def get_order(self, order_id: str) -> Order | None:
        cursor = await self._database.db.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?", (order_id,)
        )
        row = await cursor.fetchone()
        return _row_to_order(row) if row is not None else None

    async def get_orders(self, since_ms: int | None = None) -> list[Order]:
        """Query orders created at or after since_ms, newest first."""
        query = f"SELECT {_ORDER_COLUMNS} FROM orders"
        params: list = []
        if since_ms is not None:
            query += " WHERE created_at >= ?"
            params.append(since_ms)
        query += " ORDER BY created_at DESC"
        cursor = await self._database.db.execute(query, params)
        return [_row_to_order(row) for row in await cursor.fetchall()]

    # ──────────────────────────────────────────────
    # Booked entries, conversions, balances, payment methods
    # ──────────────────────────────────────────────

    async def insert_book_entry(
        self,
        entry_id: str,
        order_number: str,
        entry_type: str,
        booked_amount: Decimal,
        booked_fee: Decimal = Decimal("0"),
        quantity: Decimal = Decimal("0"),
        sync_status: str = "approved",
        synced_at: int | None = None,
    ) -> None:
        """Record a booked purchase/sale entry linked to an exchange order."""
        db = self._database.db
        await db.execute(
            "INSERT INTO book_entries "
            "(id, order_number, entry_type, booked_amount, booked_fee, quantity, "
            "sync_status, synced_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry_id,
                order_number,
                entry_type,
                str(booked_amount),
                str(booked_fee),
                str(quantity),
                sync_status,
                synced_at if synced_at is not None else _now_ms(),
            ),
        )
        await db.commit()

    async def get_book_entries(self) -> list[dict]:
        cursor = await self._database.db.execute(
            "SELECT id, order_number, entry_type, booked_amount, booked_fee, "
            "quantity, sync_status, synced_at FROM book_entries"
        )
        return [
            {
                "id": row[0],
                "order_number": row[1],
                "entry_type": row[2],
                "booked_amount": Decimal(row[3]),
                "booked_fee": Decimal(row[4]),
                "quantity": Decimal(row[5]),
                "sync_status": row[6],
                "synced_at": row[7],
            }
            for row in await cursor.fetchall()
        ]

    async def insert_conversion(
        self,
        conversion_id: str,
        trade_id: int | None,
        asset: str,
        side: str,
        quantity: Decimal,
        price: Decimal,
        source: str = "sync",
        status: str = "pending_approval",
        reference_no: str | None = None,
    ) -> None:
        db = self._database.db
        await db.execute(
            "INSERT INTO conversions "
            "(id, trade_id, asset, side, quantity, price, source, status, reference_no) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                conversion_id,
                trade_id,
                asset,
                side,
                str(quantity),
                str(price),
                source,
                status,
                reference_no,
            ),
        )
        await db.commit()

    async def get_conversions(self) -> list[dict]:
        cursor = await self._database.db.execute(
            "SELECT id, trade_id, asset, side, quantity, price, source, status, "
            "reference_no FROM conversions"
        )
        return [
            {
                "id": row[0],
                "trade_id": row[1],
                "asset": row[2],
                "side": row[3],
                "quantity": Decimal(row[4]),
                "price": Decimal(row[5]),
                "source": row[6],
                "status": row[7],
                "reference_no": row[8],
            }
            for row in await cursor.fetchall()
        ]

    async def set_wallet_balance(self, wallet_id: str, asset: str, balance: Decimal) -> None:
        db = self._database.db
        await db.execute(
            "INSERT OR REPLACE INTO wallet_balances (wallet_id, asset, balance) "
            "VALUES (?, ?, ?)",
            (wallet_id, asset, str(balance)),
        )
        await db.commit()

    async def get_wallet_balances(self) -> list[dict]:
        cursor = await self._database.db.execute(
            "SELECT wallet_id, asset, balance FROM wallet_balances"
        )
        return [
            {"wallet_id": row[0], "asset": row[1], "balance": Decimal(row[2])}
            for row in await cursor.fetchall()
        ]

    async def add_payment_method(self, name: str) -> None:
        db = self._database.db
        await db.execute(
            "INSERT OR IGNORE INTO payment_methods (name) VALUES (?)", (name,)
        )
        await db.commit()

    async def get_payment_methods(self) -> set[str]:
        cursor = await self._database.db.execute("SELECT name FROM payment_methods")
        return {row[0] for row in await cursor.fetchall()}

    async def insert_movement(
        self,
        movement_id: str,
        movement_type: str,
        asset: str,
        amount: Decimal,
        movement_time: int,
        status: str = "completed",
        fee: Decimal = Decimal("0"),
        tx_id: str | None = None,
        network: str | None = None,
        processed: bool = False,
    ) -> None:
        """Record a deposit or withdrawal from the exchange movement history."""
        db = self._database.db
        await db.execute(
            "INSERT INTO asset_movements "
            "(id, movement_type, asset, amount, fee, status, tx_id, network, "
            "movement_time, processed) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                movement_id,
                movement_type,
                asset,
                str(amount),
                str(fee),
                status,
                tx_id,
                network,
                movement_time,
                int(processed),
            ),
        )
        await db.commit()

    async def mark_movement_processed(self, movement_id: str) -> bool:
        """Flag a movement as booked in the ledger. Returns False for an unknown id."""
        db = self._database.db
        cursor = await db.execute(
            "UPDATE asset_movements SET processed = 1 WHERE id = ?", (movement_id,)
        )
        await db.commit()
        return cursor.rowcount > 0

    async def get_movements(
        self, movement_type: str | None = None, status: str | None = None
    ) -> list[dict]:
        """Query asset movements, optionally filtered, oldest first."""
        query = (
            "SELECT id, movement_type, asset, amount, fee, status, tx_id, network, "
            "movement_time, processed FROM asset_movements"
        )
        clauses: list[str] = []
        params: list = []
        if movement_type is not None:
            clauses.append("movement_type = ?")
            params.append(movement_type)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY movement_time ASC, id ASC"
        cursor = await self._database.db.execute(query, params)
        return [
            {
                "id": row[0],
                "movement_type": row[1],
                "asset": row[2],
                "amount": Decimal(row[3]),
                "fee": Decimal(row[4]),
                "status": row[5],
                "tx_id": row[6],
                "network": row[7],
                "movement_time": row[8],
                "processed": bool(row[9]),
            }
            for row in await cursor.fetchall()
        ]

    # ──────────────────────────────────────────────
    # Settings (generic key/value)
    # ──────────────────────────────────────────────

    async def get_setting(self, key: str) -> str | None:
        cursor = await self._database.db.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def set_setting(self, key: str, value: str) -> None:
        """Create or overwrite a setting."""
        db = self._database.db
        await db.execute(
            "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = excluded.updated_at",
            (key, value, _now_ms()),
        )
        await db.commit()

    async def insert_setting(self, key: str, value: str) -> None:
        """Create a setting that must not exist yet.

        Raises PersistenceConflictError if the key is already present.
        """
        db = self._database.db
        try:
            await db.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, _now_ms()),
            )
            await db.commit()
        except sqlite3.IntegrityError as e:
            await db.rollback()
            raise PersistenceConflictError(f"Setting {key!r} already exists") from e
