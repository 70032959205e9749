"""Tests for ReconciliationScanner: scope handling, gating, accumulation, scan log."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from recon.config import ScanSettings
from recon.data import FindingStore, LedgerStore
from recon.exceptions import ReconciliationDisabled, ValidationError
from recon.models import FindingStatus
from recon.scan import FindingReview, ReconciliationScanner, resolve_scope, summarize

NOW_S = 1_700_000_000.0


def _make_scanner(
    store: LedgerStore, finding_store: FindingStore, enabled: bool = True
) -> ReconciliationScanner:
    return ReconciliationScanner(
        store, finding_store, ScanSettings(enabled=enabled), clock=lambda: NOW_S
    )


class TestResolveScope:
    def test_default_is_all(self) -> None:
        requested, domains = resolve_scope(None)
        assert requested == ["all"]
        assert domains == [
            "orders",
            "financial",
            "balances",
            "movements",
            "conversions",
            "clients",
            "payments",
        ]

    def test_subset_keeps_registry_order(self) -> None:
        _, domains = resolve_scope(["payments", "Balances"])
        assert domains == ["balances", "payments"]

    def test_unknown_scope_rejected(self) -> None:
        with pytest.raises(ValidationError, match="inventory"):
            resolve_scope(["orders", "inventory"])

    def test_empty_scope_rejected(self) -> None:
        with pytest.raises(ValidationError):
            resolve_scope([])


class TestScan:
    @pytest.mark.asyncio()
    async def test_scan_records_findings_and_log(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-1"))
        scanner = _make_scanner(store, finding_store)

        result = await scanner.scan(scope=["balances"], triggered_by="operator")

        assert result.findings_count == 1
        assert result.critical_count == 1
        findings = await finding_store.get_findings(scan_id=result.scan_id)
        assert len(findings) == 1

        log = await finding_store.get_scan_log()
        assert len(log) == 1
        assert log[0].id == result.scan_id
        assert log[0].scope == ["balances"]
        assert log[0].triggered_by == "operator"
        assert log[0].findings_count == 1
        assert log[0].started_at <= log[0].finished_at

    @pytest.mark.asyncio()
    async def test_clean_ledger_still_logs_scan(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        result = await _make_scanner(store, finding_store).scan()

        assert result.findings_count == 0
        assert len(await finding_store.get_scan_log()) == 1

    @pytest.mark.asyncio()
    async def test_rescan_does_not_duplicate(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-1"))
        scanner = _make_scanner(store, finding_store)

        await scanner.scan()
        second = await scanner.scan()

        assert second.findings_count == 0
        assert second.detected_count == 1
        assert len(await finding_store.get_findings()) == 1
        assert len(await finding_store.get_scan_log()) == 2

    @pytest.mark.asyncio()
    async def test_accumulation_with_resolution_between_scans(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-1"))
        await store.set_wallet_balance("w2", "USDT", Decimal("-2"))
        scanner = _make_scanner(store, finding_store)
        review = FindingReview(finding_store, clock=lambda: NOW_S)

        first = await scanner.scan(scope=["balances"])
        assert first.findings_count == 2
        await review.resolve(first.findings[0].id, "booked the missing deposit")

        await store.set_wallet_balance("w3", "USDT", Decimal("-3"))
        second = await scanner.scan(scope=["balances"])

        assert second.findings_count == 1
        summary = summarize(await finding_store.get_findings())
        assert summary.total_open == 2
        assert summary.total_resolved == 1

    @pytest.mark.asyncio()
    async def test_open_count_never_decreases_without_review(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-1"))
        scanner = _make_scanner(store, finding_store)
        await scanner.scan()
        before = len(await finding_store.get_findings(status=FindingStatus.OPEN))

        await store.set_wallet_balance("w1", "USDT", Decimal("5"))
        await scanner.scan()

        after = len(await finding_store.get_findings(status=FindingStatus.OPEN))
        assert after >= before

    @pytest.mark.asyncio()
    async def test_disabled_by_setting_writes_nothing(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-1"))
        await store.set_setting("reconciliation_enabled", "false")

        with pytest.raises(ReconciliationDisabled):
            await _make_scanner(store, finding_store).scan()

        assert await finding_store.get_findings() == []
        assert await finding_store.get_scan_log() == []

    @pytest.mark.asyncio()
    async def test_setting_overrides_config_default(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        scanner = _make_scanner(store, finding_store, enabled=False)
        assert not await scanner.is_enabled()

        await store.set_setting("reconciliation_enabled", "true")
        assert await scanner.is_enabled()

    @pytest.mark.asyncio()
    async def test_audit_failure_writes_nothing(
        self, store: LedgerStore, finding_store: FindingStore
    ) -> None:
        await store.set_wallet_balance("w1", "USDT", Decimal("-1"))
        scanner = _make_scanner(store, finding_store)

        with patch.object(store, "get_payment_methods", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await scanner.scan()

        assert await finding_store.get_findings() == []
        assert await finding_store.get_scan_log() == []
