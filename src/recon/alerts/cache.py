"""Explicit snapshot cache for the alert dispatcher.

Owned by the composition root and passed to the dispatcher by reference, so
tests can start every case from a fresh instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from recon.models import AlertType


@dataclass
class AttendedState:
    data_hash: str
    attended_at: int


@dataclass
class OrderSnapshotCache:
    """Per-order state remembered between dispatcher passes.

    Attributes:
        previous_hashes: Data hash of every order seen in the last pass.
        attended: Hash recorded when the operator last attended the order.
        fired_phases: Timer thresholds (seconds) already fired, per order and timer kind.
        active: Alert type currently flagging an order as needing attention.
    """

    previous_hashes: dict[str, str] = field(default_factory=dict)
    attended: dict[str, AttendedState] = field(default_factory=dict)
    fired_phases: dict[tuple[str, AlertType], set[int]] = field(default_factory=dict)
    active: dict[str, AlertType] = field(default_factory=dict)

    def clear_timers(self, order_id: str) -> None:
        for key in [k for k in self.fired_phases if k[0] == order_id]:
            del self.fired_phases[key]

    def clear_order(self, order_id: str) -> None:
        """Drop alert state of an order; its previous hash is kept."""
        self.clear_timers(order_id)
        self.active.pop(order_id, None)

    def retain(self, order_ids: set[str]) -> None:
        """Forget attended and timer state of orders no longer listed."""
        for order_id in [o for o in self.attended if o not in order_ids]:
            del self.attended[order_id]
        for order_id in [o for o in self.active if o not in order_ids]:
            del self.active[order_id]
        for key in [k for k in self.fired_phases if k[0] not in order_ids]:
            del self.fired_phases[key]
