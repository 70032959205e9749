"""Shared data models for the ledger reconciliation engine.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
All timestamps are integer epoch milliseconds.
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from recon.status import CanonicalStatus, canonical_status


class TradeSide(str, Enum):
    """Trade or order direction, from our point of view."""

    BUY = "BUY"
    SELL = "SELL"


class TradeSource(str, Enum):
    """Where a ledger trade row came from."""

    EXCHANGE_API = "exchange_api"
    TERMINAL = "terminal"


@dataclass
class TradeRecord:
    """A single trade execution in the ledger.

    Unique on (external_trade_id, symbol). Terminal-sourced rows may carry a
    null external_trade_id until enrichment fills it.
    """

    external_trade_id: str | None
    symbol: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    quote_quantity: Decimal
    commission: Decimal
    commission_asset: str | None
    executed_at: int
    source: TradeSource = TradeSource.EXCHANGE_API
    external_order_id: str | None = None
    is_maker: bool | None = None
    id: int | None = None


class FindingStatus(str, Enum):
    """Review state of a finding. Moves only forward from OPEN."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Severity(str, Enum):
    """Finding severity, most to least urgent."""

    CRITICAL = "critical"
    WARNING = "warning"
    REVIEW = "review"
    INFO = "info"


@dataclass
class ReconciliationFinding:
    """A discrete discrepancy surfaced by a reconciliation audit."""

    id: str
    scan_id: str
    category: str
    severity: Severity
    finding_type: str
    created_at: int
    asset: str | None = None
    status: FindingStatus = FindingStatus.OPEN
    exchange_ref: str | None = None
    ledger_ref: str | None = None
    exchange_amount: Decimal | None = None
    ledger_amount: Decimal | None = None
    variance: Decimal | None = None
    suggested_action: str | None = None
    confidence: Decimal | None = None
    reasoning: str = ""
    details: dict = field(default_factory=dict)
    feedback_at: int | None = None
    feedback_note: str | None = None

    @property
    def fingerprint(self) -> str:
        """Identity of the underlying problem, stable across scans."""
        return "|".join(
            [
                self.finding_type,
                self.exchange_ref or "",
                self.ledger_ref or "",
                self.asset or "",
            ]
        )


@dataclass
class ScanLogEntry:
    """One successful reconciliation scan."""

    id: str
    started_at: int
    finished_at: int
    scope: list[str]
    findings_count: int
    critical_count: int
    triggered_by: str
    warning_count: int = 0
    review_count: int = 0
    info_count: int = 0
    duration_ms: int = 0
    summary: str = ""


@dataclass
class Order:
    """An exchange order as mirrored in the ledger.

    canonical_status is derived from raw_status and side on every access.
    """

    id: str
    order_number: str
    side: TradeSide
    raw_status: str
    amount: Decimal = Decimal("0")
    asset: str | None = None
    total_price: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    counterparty: str | None = None
    pay_method: str | None = None
    created_at: int = 0
    payment_deadline: int | None = None
    expires_at: int | None = None
    notes: str | None = None
    updated_at: int = 0

    @property
    def canonical_status(self) -> CanonicalStatus:
        return canonical_status(self.raw_status, self.side)

    def data_hash(self) -> str:
        """Fingerprint of the descriptive fields an operator cares about."""
        return json.dumps(
            {
                "raw_status": self.raw_status,
                "amount": str(self.amount),
                "total_price": str(self.total_price),
                "counterparty": self.counterparty,
                "pay_method": self.pay_method,
                "payment_deadline": self.payment_deadline,
                "expires_at": self.expires_at,
                "notes": self.notes,
            },
            sort_keys=True,
        )


class AlertType(str, Enum):
    """Kinds of order alerts."""

    NEW_ORDER = "new_order"
    INFO_UPDATE = "info_update"
    PAYMENT_TIMER = "payment_timer"
    ORDER_TIMER = "order_timer"


TIMER_ALERTS = frozenset({AlertType.PAYMENT_TIMER, AlertType.ORDER_TIMER})


@dataclass
class OrderAlert:
    """Transient alert about an order. Never persisted."""

    order_id: str
    order_number: str
    alert_type: AlertType
    fired_at: int
    counterparty: str | None = None
    amount: Decimal | None = None
    urgent: bool = False
    seconds_remaining: int | None = None

    @property
    def target(self) -> str:
        """Navigation path opened when the operator interacts with the alert."""
        return f"/orders/{self.order_id}"

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "alert_type": self.alert_type.value,
            "fired_at": self.fired_at,
            "counterparty": self.counterparty,
            "amount": str(self.amount) if self.amount is not None else None,
            "urgent": self.urgent,
            "seconds_remaining": self.seconds_remaining,
            "target": self.target,
        }
