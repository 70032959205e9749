"""Order alert dispatcher: classifies order changes and delivers alerts.

Each pass compares the current orders with the snapshot cache:

  - terminal (Completed/Cancelled/Expired) or past expiry: never alerts; alert
    state is cleared once the terminal grace period has elapsed
  - attended with an unchanged data hash: no alert
  - unseen order: new_order; changed data hash: info_update
  - on the initial load only a change against the attended hash alerts
  - payment_timer / order_timer: once per threshold phase as the payment
    deadline or the order expiry approaches

Delivery is gated by the per-user mute flag, read from the key/value store on
every dispatch. Suppressed alerts are dropped, never replayed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from recon.alerts.cache import AttendedState, OrderSnapshotCache
from recon.alerts.kv import KeyValueStore, mute_key, parse_flag
from recon.alerts.notifier import Notifier
from recon.config import AlertSettings
from recon.data.store import LedgerStore
from recon.logging import get_logger
from recon.models import AlertType, Order, OrderAlert
from recon.status import CanonicalStatus, is_terminal

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    """Outcome of one dispatch call."""

    delivered: int = 0
    suppressed: int = 0
    failed: int = 0
    muted: bool = False


class OrderAlertDispatcher:
    """Turns order snapshots into operator alerts.

    Args:
        store: Ledger store the active orders are read from.
        cache: Snapshot cache shared with the composition root.
        kv: Key/value store holding the per-user mute flag.
        notifier: Delivery channel.
        settings: Thresholds, grace period and the user id.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        store: LedgerStore,
        cache: OrderSnapshotCache,
        kv: KeyValueStore,
        notifier: Notifier,
        settings: AlertSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cache = cache
        self._kv = kv
        self._notifier = notifier
        self._settings = settings
        self._clock = clock
        self._lock = asyncio.Lock()
        self._loaded = False

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ──────────────────────────────────────────────
    # Mute flag
    # ──────────────────────────────────────────────

    async def is_muted(self, user_id: str | None = None) -> bool:
        return parse_flag(await self._kv.get(mute_key(user_id or self._settings.user_id)))

    async def set_muted(self, muted: bool, user_id: str | None = None) -> None:
        user = user_id or self._settings.user_id
        await self._kv.set(mute_key(user), "true" if muted else "false")
        logger.info("alerts_mute_changed", user_id=user, muted=muted)

    # ──────────────────────────────────────────────
    # Classification
    # ──────────────────────────────────────────────

    def process(self, orders: Sequence[Order], initial_load: bool = False) -> list[OrderAlert]:
        """Classify the current order snapshot into alerts and update the cache."""
        now = self._now_ms()
        grace_ms = self._settings.terminal_grace_seconds * 1000
        alerts: list[OrderAlert] = []
        current: dict[str, str] = {}

        for order in orders:
            data_hash = order.data_hash()
            current[order.id] = data_hash

            terminal = is_terminal(order.canonical_status)
            expired = order.expires_at is not None and order.expires_at < now
            if terminal or expired:
                terminal_at = (order.updated_at if terminal else order.expires_at) or 0
                if now - terminal_at > grace_ms:
                    self._cache.clear_order(order.id)
                continue

            attended = self._cache.attended.get(order.id)
            if attended is not None and attended.data_hash == data_hash:
                self._cache.active.pop(order.id, None)
                continue

            previous = self._cache.previous_hashes.get(order.id)
            if initial_load:
                if attended is not None:
                    alerts.append(self._alert(order, AlertType.INFO_UPDATE, now))
            elif previous is None:
                alerts.append(self._alert(order, AlertType.NEW_ORDER, now))
            elif previous != data_hash:
                alerts.append(self._alert(order, AlertType.INFO_UPDATE, now))

            if order.canonical_status == CanonicalStatus.PENDING_PAYMENT:
                alert = self._timer_alert(
                    order,
                    AlertType.PAYMENT_TIMER,
                    order.payment_deadline,
                    self._settings.payment_timer_thresholds,
                    now,
                )
                if alert is not None:
                    alerts.append(alert)
            alert = self._timer_alert(
                order,
                AlertType.ORDER_TIMER,
                order.expires_at,
                self._settings.order_timer_thresholds,
                now,
            )
            if alert is not None:
                alerts.append(alert)

        self._cache.previous_hashes = current
        for alert in alerts:
            self._cache.active[alert.order_id] = alert.alert_type
        return alerts

    def _alert(
        self,
        order: Order,
        alert_type: AlertType,
        now: int,
        seconds_remaining: int | None = None,
    ) -> OrderAlert:
        return OrderAlert(
            order_id=order.id,
            order_number=order.order_number,
            alert_type=alert_type,
            fired_at=now,
            counterparty=order.counterparty,
            amount=order.total_price,
            urgent=seconds_remaining is not None,
            seconds_remaining=seconds_remaining,
        )

    def _timer_alert(
        self,
        order: Order,
        alert_type: AlertType,
        deadline: int | None,
        thresholds: list[int],
        now: int,
    ) -> OrderAlert | None:
        """Fire when the remaining time enters a threshold phase not yet fired.

        Jumping straight into a later phase fires once and marks every
        earlier phase as fired too.
        """
        if deadline is None:
            return None
        remaining = (deadline - now) // 1000
        if remaining <= 0:
            return None
        due = {t for t in thresholds if remaining <= t}
        fired = self._cache.fired_phases.setdefault((order.id, alert_type), set())
        if not due - fired:
            return None
        fired.update(due)
        return self._alert(order, alert_type, now, seconds_remaining=remaining)

    # ──────────────────────────────────────────────
    # Delivery
    # ──────────────────────────────────────────────

    async def dispatch(self, alerts: Sequence[OrderAlert]) -> DispatchResult:
        """Deliver alerts unless the user is muted right now."""
        if await self.is_muted():
            if alerts:
                logger.debug("order_alerts_suppressed", count=len(alerts))
            return DispatchResult(suppressed=len(alerts), muted=True)

        result = DispatchResult()
        for alert in alerts:
            try:
                await self._notifier.notify(alert)
            except Exception:
                result.failed += 1
                logger.error(
                    "order_alert_delivery_failed",
                    order_id=alert.order_id,
                    alert_type=alert.alert_type.value,
                    exc_info=True,
                )
                continue
            result.delivered += 1
        return result

    async def poll_once(self) -> DispatchResult:
        """Load recent orders from the ledger, classify them and dispatch."""
        async with self._lock:
            since = self._now_ms() - self._settings.order_lookback_hours * 3_600_000
            orders = await self._store.get_orders(since_ms=since)
            alerts = self.process(orders, initial_load=not self._loaded)
            self._loaded = True
            self._cache.retain({o.id for o in orders})
            result = await self.dispatch(alerts)

        if alerts:
            logger.info(
                "order_alerts_dispatched",
                alerts=len(alerts),
                delivered=result.delivered,
                suppressed=result.suppressed,
                failed=result.failed,
            )
        return result

    async def refresh(self) -> DispatchResult:
        """Immediate pass, e.g. when the operator returns to the application."""
        logger.debug("order_alerts_refresh")
        return await self.poll_once()

    # ──────────────────────────────────────────────
    # Operator interaction
    # ──────────────────────────────────────────────

    def mark_attended(self, order: Order) -> None:
        """Record the order's current data as seen and stop its alerts."""
        self._cache.attended[order.id] = AttendedState(
            data_hash=order.data_hash(), attended_at=self._now_ms()
        )
        self._cache.clear_order(order.id)

    def needs_attention(self, order_id: str) -> AlertType | None:
        return self._cache.active.get(order_id)
