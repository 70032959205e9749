"""Tests for key/value stores and alert notifiers."""

import json
from unittest.mock import AsyncMock

import pytest

from recon.alerts import HubNotifier, InMemoryKeyValueStore, LogNotifier, SettingsKeyValueStore
from recon.alerts.kv import parse_flag
from recon.data import LedgerStore
from recon.models import AlertType, OrderAlert


def _make_alert() -> OrderAlert:
    return OrderAlert(
        order_id="o1",
        order_number="N-1",
        alert_type=AlertType.PAYMENT_TIMER,
        fired_at=1000,
        urgent=True,
        seconds_remaining=90,
    )


class TestInMemoryKeyValueStore:
    @pytest.mark.asyncio()
    async def test_get_set(self) -> None:
        kv = InMemoryKeyValueStore({"a": "1"})
        assert await kv.get("a") == "1"
        assert await kv.get("b") is None
        await kv.set("b", "2")
        assert await kv.get("b") == "2"

    @pytest.mark.asyncio()
    async def test_on_change_and_unsubscribe(self) -> None:
        kv = InMemoryKeyValueStore()
        seen: list[tuple[str, str]] = []
        unsubscribe = kv.on_change(lambda k, v: seen.append((k, v)))

        await kv.set("muted", "true")
        unsubscribe()
        await kv.set("muted", "false")

        assert seen == [("muted", "true")]

    @pytest.mark.asyncio()
    async def test_failing_listener_does_not_break_set(self) -> None:
        kv = InMemoryKeyValueStore()

        def broken(key: str, value: str) -> None:
            raise RuntimeError("listener bug")

        kv.on_change(broken)
        await kv.set("k", "v")
        assert await kv.get("k") == "v"


class TestSettingsKeyValueStore:
    @pytest.mark.asyncio()
    async def test_persists_in_settings_table(self, store: LedgerStore) -> None:
        kv = SettingsKeyValueStore(store)
        await kv.set("notifications_muted:alice", "true")
        assert await store.get_setting("notifications_muted:alice") == "true"
        assert await kv.get("notifications_muted:alice") == "true"


def test_parse_flag() -> None:
    assert parse_flag("true")
    assert parse_flag(" ON ")
    assert not parse_flag("false")
    assert not parse_flag(None)


class TestNotifiers:
    @pytest.mark.asyncio()
    async def test_hub_notifier_broadcasts_json(self) -> None:
        hub = AsyncMock()
        await HubNotifier(hub).notify(_make_alert())

        message = json.loads(hub.broadcast.await_args.args[0])
        assert message["type"] == "order_alert"
        assert message["alert"]["alert_type"] == "payment_timer"
        assert message["alert"]["target"] == "/orders/o1"
        assert message["alert"]["urgent"] is True

    @pytest.mark.asyncio()
    async def test_log_notifier(self) -> None:
        await LogNotifier().notify(_make_alert())
