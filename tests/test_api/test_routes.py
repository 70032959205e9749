"""Tests for the trigger API using FastAPI's TestClient.

Components run inside the app lifespan so the database lives on the same
event loop as the request handlers.
"""

import time
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from recon.alerts import HubNotifier, InMemoryKeyValueStore, OrderAlertDispatcher, OrderSnapshotCache
from recon.api.app import create_app
from recon.config import AlertSettings, ScanSettings
from recon.data import FindingStore, LedgerDatabase, LedgerStore
from recon.scan import FindingReview, ReconciliationScanner
from recon.sync import TradeSyncWorker


def _raw_trade(trade_id: int, time_ms: int) -> dict:
    return {
        "symbol": "USDTINR",
        "id": trade_id,
        "orderId": 9000 + trade_id,
        "price": "88.15",
        "qty": "10",
        "quoteQty": "881.5",
        "commission": "0.01",
        "commissionAsset": "USDT",
        "time": time_ms,
        "isBuyer": True,
        "isMaker": True,
    }


def _order_body(order_id: str, raw_status: str, side: str = "SELL") -> dict:
    now_ms = int(time.time() * 1000)
    return {
        "id": order_id,
        "order_number": f"N-{order_id}",
        "side": side,
        "raw_status": raw_status,
        "asset": "USDT",
        "amount": "100",
        "total_price": "8800",
        "unit_price": "88",
        "counterparty": "Ravi",
        "pay_method": "UPI",
        "created_at": now_ms,
        "updated_at": now_ms,
    }


def _build_app(db_path: str, scan_enabled: bool = True) -> FastAPI:
    exchange = AsyncMock()
    exchange.fetch_my_trades = AsyncMock(
        return_value=[_raw_trade(1, 1_700_000_000_000), _raw_trade(2, 1_700_000_001_000)]
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = LedgerDatabase(db_path)
        await database.connect()
        store = LedgerStore(database)
        findings = FindingStore(database)
        app.state.store = store
        app.state.findings = findings
        app.state.sync_worker = TradeSyncWorker(exchange, store)
        app.state.scanner = ReconciliationScanner(
            store, findings, ScanSettings(enabled=scan_enabled)
        )
        app.state.review = FindingReview(findings)
        app.state.dispatcher = OrderAlertDispatcher(
            store=store,
            cache=OrderSnapshotCache(),
            kv=InMemoryKeyValueStore(),
            notifier=HubNotifier(app.state.hub),
            settings=AlertSettings(),
        )
        yield
        await database.close()

    return create_app(lifespan=lifespan)


@pytest.fixture
def client(tmp_path):
    with TestClient(_build_app(str(tmp_path / "ledger.db"))) as test_client:
        yield test_client


class TestReconciliationApi:
    def test_scan_on_empty_ledger(self, client: TestClient) -> None:
        response = client.post("/api/reconciliation/scan")
        assert response.status_code == 200
        body = response.json()
        assert body["findings_count"] == 0
        assert body["critical_count"] == 0
        assert body["scan_id"]

    def test_unknown_scope_is_400(self, client: TestClient) -> None:
        response = client.post("/api/reconciliation/scan", json={"scope": ["inventory"]})
        assert response.status_code == 400
        assert "inventory" in response.json()["error"]

    def test_disabled_is_403(self, tmp_path) -> None:
        with TestClient(_build_app(str(tmp_path / "off.db"), scan_enabled=False)) as c:
            response = c.post("/api/reconciliation/scan", json={"scope": ["all"]})
            assert response.status_code == 403
            assert c.get("/api/reconciliation/scans").json() == []

    def test_scan_review_flow(self, client: TestClient) -> None:
        assert client.post("/api/orders", json=_order_body("o1", "COMPLETED")).status_code == 200

        scan = client.post(
            "/api/reconciliation/scan",
            json={"scope": ["orders"], "triggered_by": "operator"},
        ).json()
        assert scan["findings_count"] == 1
        assert scan["critical_count"] == 1

        findings = client.get("/api/reconciliation/findings", params={"status": "open"}).json()
        assert len(findings) == 1
        assert findings[0]["finding_type"] == "missing_sale"
        assert findings[0]["exchange_ref"] == "N-o1"

        summary = client.get("/api/reconciliation/summary").json()
        assert summary["total_open"] == 1
        assert summary["open_by_severity"] == {"critical": 1}

        finding_id = findings[0]["id"]
        resolved = client.post(
            f"/api/reconciliation/findings/{finding_id}/feedback",
            json={"status": "resolved", "note": "booked manually"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"

        again = client.post(
            f"/api/reconciliation/findings/{finding_id}/feedback",
            json={"status": "acknowledged"},
        )
        assert again.status_code == 400

        rescan = client.post("/api/reconciliation/scan", json={"scope": ["orders"]}).json()
        assert rescan["findings_count"] == 0
        assert client.get("/api/reconciliation/summary").json()["total_open"] == 0

        scans = client.get("/api/reconciliation/scans").json()
        assert len(scans) == 2
        assert {s["triggered_by"] for s in scans} == {"operator", "system"}

    def test_feedback_errors(self, client: TestClient) -> None:
        missing = client.post(
            "/api/reconciliation/findings/nope/feedback", json={"status": "resolved"}
        )
        assert missing.status_code == 404

        bad_status = client.post(
            "/api/reconciliation/findings/nope/feedback", json={"status": "closed"}
        )
        assert bad_status.status_code == 400

        no_body = client.post("/api/reconciliation/findings/nope/feedback", content=b"{")
        assert no_body.status_code == 400

    def test_findings_bad_status_filter(self, client: TestClient) -> None:
        assert client.get("/api/reconciliation/findings?status=closed").status_code == 400


class TestOrdersApi:
    def test_upsert_returns_canonical_status(self, client: TestClient) -> None:
        response = client.post("/api/orders", json=_order_body("o1", "BUYER_PAYED", side="SELL"))
        assert response.status_code == 200
        assert response.json()["canonical_status"] == "Pending Release"

        response = client.post("/api/orders", json=_order_body("o1", "BUYER_PAYED", side="BUY"))
        assert response.json()["canonical_status"] == "Releasing"

        orders = client.get("/api/orders").json()
        assert len(orders) == 1

    def test_invalid_order(self, client: TestClient) -> None:
        body = _order_body("o1", "TRADING")
        body["side"] = "HOLD"
        assert client.post("/api/orders", json=body).status_code == 400

        body = _order_body("o1", "TRADING")
        del body["order_number"]
        assert client.post("/api/orders", json=body).status_code == 400

        body = _order_body("o1", "TRADING")
        body["amount"] = "lots"
        assert client.post("/api/orders", json=body).status_code == 400

    def test_mark_attended(self, client: TestClient) -> None:
        client.post("/api/orders", json=_order_body("o1", "TRADING"))
        assert client.post("/api/orders/o1/attended").json() == {
            "order_id": "o1",
            "attended": True,
        }
        assert client.post("/api/orders/missing/attended").status_code == 404


class TestSyncApi:
    def test_trigger_and_status(self, client: TestClient) -> None:
        response = client.post("/api/sync/trades")
        assert response.status_code == 200
        assert response.json()["inserted"] == 2

        status = client.get("/api/sync/status").json()
        assert status["running"] is False
        assert status["trade_count"] == 2
        assert status["cursor"] == 1_700_000_001_001
        assert status["last_result"]["fetched"] == 2

        assert client.post("/api/sync/trades").json()["inserted"] == 0


class TestAlertsApi:
    def test_mute_round_trip(self, client: TestClient) -> None:
        assert client.get("/api/alerts/mute/alice").json() == {"user_id": "alice", "muted": False}

        response = client.put("/api/alerts/mute/alice", json={"muted": True})
        assert response.status_code == 200
        assert client.get("/api/alerts/mute/alice").json()["muted"] is True
        assert client.get("/api/alerts/mute/bob").json()["muted"] is False

    def test_mute_requires_bool(self, client: TestClient) -> None:
        assert client.put("/api/alerts/mute/alice", json={"muted": "yes"}).status_code == 400

    def test_refresh_respects_default_user_mute(self, client: TestClient) -> None:
        client.put("/api/alerts/mute/default", json={"muted": True})
        assert client.post("/api/alerts/refresh").json()["muted"] is True

    def test_websocket_receives_new_order_alert(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/alerts") as ws:
            client.post("/api/alerts/refresh")
            client.post("/api/orders", json=_order_body("o9", "TRADING", side="BUY"))

            result = client.post("/api/alerts/refresh").json()
            assert result["delivered"] == 1

            message = ws.receive_json()
            assert message["type"] == "order_alert"
            assert message["alert"]["alert_type"] == "new_order"
            assert message["alert"]["target"] == "/orders/o9"


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
