"""Tests for the individual reconciliation audit rules."""

from decimal import Decimal

import pytest

from recon.config import ScanSettings
from recon.data import LedgerStore
from recon.models import Order, Severity, TradeRecord, TradeSide, TradeSource
from recon.scan.audits import (
    AuditContext,
    audit_amount_mismatch,
    audit_conversion_gaps,
    audit_duplicate_entries,
    audit_fee_variance,
    audit_missing_entries,
    audit_negative_balances,
    audit_payment_method_drift,
    audit_similar_counterparties,
    audit_stale_pending,
    audit_unrecorded_movements,
    day_start_ms,
)

# 2023-11-15 03:43:20 IST
NOW_MS = 1_700_000_000_000
IST_MIDNIGHT_MS = 1_699_986_600_000
HOUR_MS = 3_600_000


def _ctx(store: LedgerStore, **overrides: object) -> AuditContext:
    return AuditContext(
        store=store,
        settings=ScanSettings(**overrides),
        scan_id="scan-1",
        now_ms=NOW_MS,
    )


def _make_order(
    number: str,
    side: TradeSide = TradeSide.SELL,
    raw_status: str = "COMPLETED",
    total: str = "8800",
    commission: str = "0",
    counterparty: str | None = "Ravi Kumar",
    pay_method: str | None = "UPI",
    created_at: int = NOW_MS - HOUR_MS,
) -> Order:
    return Order(
        id=f"id-{number}",
        order_number=number,
        side=side,
        raw_status=raw_status,
        asset="USDT",
        amount=Decimal("100"),
        total_price=Decimal(total),
        unit_price=Decimal("88"),
        commission=Decimal(commission),
        counterparty=counterparty,
        pay_method=pay_method,
        created_at=created_at,
        updated_at=created_at,
    )


def test_day_start_uses_local_offset() -> None:
    assert day_start_ms(NOW_MS, 330) == IST_MIDNIGHT_MS
    assert day_start_ms(IST_MIDNIGHT_MS, 330) == IST_MIDNIGHT_MS
    assert day_start_ms(NOW_MS, 0) == 1_699_920_000_000


class TestMissingEntries:
    @pytest.mark.asyncio()
    async def test_classifies_missing_purchase_sale_and_small_sale(
        self, store: LedgerStore
    ) -> None:
        await store.upsert_order(_make_order("B1", side=TradeSide.BUY))
        await store.upsert_order(_make_order("S1", total="8800"))
        await store.upsert_order(_make_order("S2", total="1500"))
        await store.upsert_order(_make_order("S3"))
        await store.insert_book_entry("e1", "S3", "sale", Decimal("8800"))

        findings = await audit_missing_entries(_ctx(store))

        by_ref = {f.exchange_ref: f for f in findings}
        assert set(by_ref) == {"B1", "S1", "S2"}
        assert by_ref["B1"].finding_type == "missing_purchase"
        assert by_ref["S1"].finding_type == "missing_sale"
        assert by_ref["S2"].finding_type == "missing_small_sale"
        assert all(f.severity == Severity.CRITICAL for f in findings)
        assert all(f.scan_id == "scan-1" for f in findings)

    @pytest.mark.asyncio()
    async def test_ignores_open_and_previous_day_orders(self, store: LedgerStore) -> None:
        await store.upsert_order(_make_order("S1", raw_status="BUYER_PAYED"))
        await store.upsert_order(_make_order("S2", created_at=IST_MIDNIGHT_MS - 1))

        assert await audit_missing_entries(_ctx(store)) == []


class TestDuplicateAndStale:
    @pytest.mark.asyncio()
    async def test_duplicate_entries_per_type(self, store: LedgerStore) -> None:
        await store.insert_book_entry("e1", "S1", "sale", Decimal("10"))
        await store.insert_book_entry("e2", "S1", "sale", Decimal("10"))
        await store.insert_book_entry("e3", "S1", "purchase", Decimal("10"))

        findings = await audit_duplicate_entries(_ctx(store))

        assert len(findings) == 1
        assert findings[0].details["entry_ids"] == ["e1", "e2"]
        assert findings[0].severity == Severity.CRITICAL

    @pytest.mark.asyncio()
    async def test_stale_pending(self, store: LedgerStore) -> None:
        await store.insert_book_entry(
            "old", "S1", "sale", Decimal("10"),
            sync_status="pending_approval", synced_at=NOW_MS - 25 * HOUR_MS,
        )
        await store.insert_book_entry(
            "fresh", "S2", "sale", Decimal("10"),
            sync_status="pending_approval", synced_at=NOW_MS - HOUR_MS,
        )
        await store.insert_book_entry(
            "done", "S3", "sale", Decimal("10"), synced_at=NOW_MS - 48 * HOUR_MS
        )

        findings = await audit_stale_pending(_ctx(store))

        assert [f.ledger_ref for f in findings] == ["old"]
        assert findings[0].severity == Severity.REVIEW


class TestFinancial:
    @pytest.mark.asyncio()
    async def test_amount_mismatch_thresholds(self, store: LedgerStore) -> None:
        await store.upsert_order(_make_order("S1", total="1000"))
        await store.upsert_order(_make_order("S2", total="1000"))
        await store.upsert_order(_make_order("S3", total="1000"))
        await store.insert_book_entry("e1", "S1", "sale", Decimal("999.60"))
        await store.insert_book_entry("e2", "S2", "sale", Decimal("990"))
        await store.insert_book_entry("e3", "S3", "sale", Decimal("800"))

        findings = await audit_amount_mismatch(_ctx(store))

        by_ref = {f.exchange_ref: f for f in findings}
        assert set(by_ref) == {"S2", "S3"}
        assert by_ref["S2"].severity == Severity.WARNING
        assert by_ref["S2"].variance == Decimal("10")
        assert by_ref["S3"].severity == Severity.CRITICAL

    @pytest.mark.asyncio()
    async def test_fee_variance_on_sales_only(self, store: LedgerStore) -> None:
        await store.upsert_order(_make_order("S1", commission="5"))
        await store.upsert_order(_make_order("S2", commission="25"))
        await store.upsert_order(_make_order("B1", side=TradeSide.BUY, commission="5"))
        await store.insert_book_entry("e1", "S1", "sale", Decimal("8800"), Decimal("4"))
        await store.insert_book_entry("e2", "S2", "small_sale", Decimal("8800"), Decimal("0"))
        await store.insert_book_entry("e3", "B1", "purchase", Decimal("8800"), Decimal("0"))

        findings = await audit_fee_variance(_ctx(store))

        by_ref = {f.exchange_ref: f for f in findings}
        assert set(by_ref) == {"S1", "S2"}
        assert by_ref["S1"].severity == Severity.REVIEW
        assert by_ref["S2"].severity == Severity.WARNING
        assert all(f.category == "fees" for f in findings)


class TestBalancesAndConversions:
    @pytest.mark.asyncio()
    async def test_negative_balances(self, store: LedgerStore) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-3.5"))
        await store.set_wallet_balance("w2", "USDT", Decimal("10"))

        findings = await audit_negative_balances(_ctx(store))

        assert len(findings) == 1
        assert findings[0].ledger_ref == "w1"
        assert findings[0].variance == Decimal("3.5")

    @pytest.mark.asyncio()
    async def test_conversion_gaps(self, store: LedgerStore) -> None:
        trade = TradeRecord(
            external_trade_id="1",
            symbol="USDTINR",
            side=TradeSide.BUY,
            quantity=Decimal("2"),
            price=Decimal("88"),
            quote_quantity=Decimal("176"),
            commission=Decimal("0"),
            commission_asset=None,
            executed_at=NOW_MS,
            source=TradeSource.EXCHANGE_API,
        )
        await store.insert_trades([trade, TradeRecord(**{**trade.__dict__, "external_trade_id": "2"})])
        linked_id = min((await store.get_trade_ids()))
        await store.insert_conversion("c1", linked_id, "USDT", "BUY", Decimal("2"), Decimal("88"))
        await store.insert_conversion(
            "c2", 9999, "USDT", "BUY", Decimal("1"), Decimal("88"),
            status="approved", reference_no="REF-2",
        )
        await store.insert_conversion(
            "c3", 8888, "USDT", "BUY", Decimal("1"), Decimal("88"),
            source="manual", status="approved",
        )

        findings = await audit_conversion_gaps(_ctx(store))

        assert len(findings) == 2
        unlinked = [f for f in findings if f.suggested_action == "record_conversion"]
        orphaned = [f for f in findings if f.suggested_action == "review_conversion"]
        assert len(unlinked) == 1
        assert unlinked[0].exchange_amount == Decimal("176")
        assert [f.ledger_ref for f in orphaned] == ["REF-2"]


class TestMovements:
    @pytest.mark.asyncio()
    async def test_unrecorded_deposits_and_withdrawals(self, store: LedgerStore) -> None:
        await store.insert_movement(
            "d1", "deposit", "USDT", Decimal("500"), NOW_MS - HOUR_MS,
            tx_id="0xabc", network="TRX",
        )
        await store.insert_movement(
            "d2", "deposit", "USDT", Decimal("50"), NOW_MS - HOUR_MS, processed=True
        )
        await store.insert_movement(
            "d3", "deposit", "USDT", Decimal("75"), NOW_MS - HOUR_MS, status="pending"
        )
        await store.insert_movement(
            "w1", "withdrawal", "BTC", Decimal("0.01"), NOW_MS - HOUR_MS,
            fee=Decimal("0.0002"),
        )

        findings = await audit_unrecorded_movements(_ctx(store))

        assert [f.finding_type for f in findings] == [
            "unrecorded_deposit",
            "unrecorded_withdrawal",
        ]
        deposit, withdrawal = findings
        assert deposit.category == "movements"
        assert deposit.severity == Severity.WARNING
        assert deposit.confidence == Decimal("0.85")
        assert deposit.exchange_ref == "0xabc"
        assert deposit.variance == Decimal("500")
        assert deposit.suggested_action == "record_deposit"
        assert withdrawal.exchange_ref == "w1"
        assert withdrawal.details["fee"] == "0.0002"
        assert withdrawal.suggested_action == "record_withdrawal"

    @pytest.mark.asyncio()
    async def test_processed_movement_is_not_flagged(self, store: LedgerStore) -> None:
        await store.insert_movement("d1", "deposit", "USDT", Decimal("500"), NOW_MS)
        assert await store.mark_movement_processed("d1") is True
        assert await store.mark_movement_processed("missing") is False

        assert await audit_unrecorded_movements(_ctx(store)) == []


class TestClientsAndPayments:
    @pytest.mark.asyncio()
    async def test_similar_counterparties(self, store: LedgerStore) -> None:
        await store.upsert_order(_make_order("S1", counterparty="Ravi Kumar"))
        await store.upsert_order(_make_order("S2", counterparty="ravi kumaar"))
        await store.upsert_order(_make_order("S3", counterparty="Ravi Kumar"))
        await store.upsert_order(_make_order("S4", counterparty="Anita"))

        findings = await audit_similar_counterparties(_ctx(store))

        assert len(findings) == 1
        assert findings[0].exchange_ref == "ravi k"
        assert findings[0].details["names"] == ["Ravi Kumar", "ravi kumaar"]

    @pytest.mark.asyncio()
    async def test_payment_method_drift(self, store: LedgerStore) -> None:
        await store.add_payment_method("UPI")
        for i in range(3):
            await store.upsert_order(_make_order(f"S{i}", pay_method="IMPS"))
        for i in range(2):
            await store.upsert_order(_make_order(f"T{i}", pay_method="Paytm"))
        await store.upsert_order(_make_order("U1", pay_method="upi"))

        findings = await audit_payment_method_drift(_ctx(store))

        assert len(findings) == 1
        assert findings[0].exchange_ref == "imps"
        assert findings[0].severity == Severity.INFO
        assert findings[0].details["occurrence_count"] == 3
