"""Reconciliation audit rules, grouped by audit domain.

Every audit is a coroutine taking an AuditContext and returning the findings
it detected. Audits only read the ledger; persisting findings is the
scanner's job. Amount rules compare exchange-side values (orders, trades)
against booked values (book entries, conversions, wallet balances).
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal

from recon.config import ScanSettings
from recon.data.store import LedgerStore
from recon.models import Order, ReconciliationFinding, Severity, TradeSide
from recon.status import CanonicalStatus

_DAY_MS = 86_400_000
_SALE_TYPES = ("sale", "small_sale")


def day_start_ms(now_ms: int, offset_minutes: int) -> int:
    """Epoch ms of local midnight for the business day containing now_ms."""
    offset_ms = offset_minutes * 60_000
    local = now_ms + offset_ms
    return local - (local % _DAY_MS) - offset_ms


@dataclass
class AuditContext:
    """Everything an audit needs: ledger access, settings and scan identity."""

    store: LedgerStore
    settings: ScanSettings
    scan_id: str
    now_ms: int

    @property
    def day_start(self) -> int:
        return day_start_ms(self.now_ms, self.settings.timezone_offset_minutes)

    def finding(
        self,
        finding_type: str,
        category: str,
        severity: Severity,
        **fields: object,
    ) -> ReconciliationFinding:
        return ReconciliationFinding(
            id=str(uuid.uuid4()),
            scan_id=self.scan_id,
            category=category,
            severity=severity,
            finding_type=finding_type,
            created_at=self.now_ms,
            **fields,  # type: ignore[arg-type]
        )

    async def completed_orders_today(self) -> list[Order]:
        orders = await self.store.get_orders(since_ms=self.day_start)
        return [o for o in orders if o.canonical_status == CanonicalStatus.COMPLETED]


Audit = Callable[[AuditContext], Awaitable[list[ReconciliationFinding]]]


# ──────────────────────────────────────────────
# orders
# ──────────────────────────────────────────────


async def audit_missing_entries(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Completed exchange orders of the business day with no booked entry."""
    orders = await ctx.completed_orders_today()
    if not orders:
        return []

    booked = {e["order_number"] for e in await ctx.store.get_book_entries()}
    low, high = ctx.settings.small_sale_min, ctx.settings.small_sale_max
    findings = []

    for order in orders:
        if order.order_number in booked:
            continue
        details = {
            "counterparty": order.counterparty,
            "pay_method": order.pay_method,
            "qty": str(order.amount),
            "price": str(order.unit_price),
            "commission": str(order.commission),
            "created_at": order.created_at,
        }
        if order.side == TradeSide.BUY:
            findings.append(
                ctx.finding(
                    "missing_purchase",
                    "orders",
                    Severity.CRITICAL,
                    asset=order.asset,
                    exchange_ref=order.order_number,
                    exchange_amount=order.total_price,
                    variance=order.total_price,
                    suggested_action="create_purchase",
                    confidence=Decimal("0.95"),
                    reasoning=(
                        f"BUY order {order.order_number} for {order.asset} "
                        f"({order.total_price}) completed on the exchange but has no "
                        f"booked purchase. Counterparty: {order.counterparty or 'Unknown'}."
                    ),
                    details=details,
                )
            )
            continue

        is_small = low <= order.total_price <= high
        findings.append(
            ctx.finding(
                "missing_small_sale" if is_small else "missing_sale",
                "orders",
                Severity.CRITICAL,
                asset=order.asset,
                exchange_ref=order.order_number,
                exchange_amount=order.total_price,
                variance=order.total_price,
                suggested_action="include_small_sales" if is_small else "create_sales",
                confidence=Decimal("0.92"),
                reasoning=(
                    f"SELL order {order.order_number} for {order.asset} "
                    f"({order.total_price}) completed on the exchange but has no booked "
                    f"{'small sale' if is_small else 'sale'}."
                ),
                details=details,
            )
        )
    return findings


async def audit_duplicate_entries(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Orders booked more than once under the same entry type."""
    groups: dict[tuple[str, str], list[str]] = defaultdict(list)
    for entry in await ctx.store.get_book_entries():
        groups[(entry["order_number"], entry["entry_type"])].append(entry["id"])

    findings = []
    for (order_number, entry_type), ids in sorted(groups.items()):
        if len(ids) < 2:
            continue
        findings.append(
            ctx.finding(
                "duplicate_entry",
                "orders",
                Severity.CRITICAL,
                exchange_ref=order_number,
                ledger_ref=entry_type,
                suggested_action="reverse_duplicate",
                confidence=Decimal("0.99"),
                reasoning=(
                    f"Order {order_number} has {len(ids)} {entry_type} entries. "
                    "Inventory and revenue are counted more than once."
                ),
                details={"entry_ids": sorted(ids), "entry_type": entry_type},
            )
        )
    return findings


async def audit_stale_pending(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Booked entries stuck in pending approval past the staleness window."""
    cutoff = ctx.now_ms - ctx.settings.stale_pending_hours * 3_600_000
    findings = []
    for entry in await ctx.store.get_book_entries():
        if entry["sync_status"] != "pending_approval" or entry["synced_at"] >= cutoff:
            continue
        findings.append(
            ctx.finding(
                "stale_pending",
                "orders",
                Severity.REVIEW,
                exchange_ref=entry["order_number"],
                ledger_ref=entry["id"],
                ledger_amount=entry["booked_amount"],
                suggested_action="review_pending",
                confidence=Decimal("0.75"),
                reasoning=(
                    f"{entry['entry_type'].capitalize()} entry for {entry['order_number']} "
                    f"has been pending approval for over {ctx.settings.stale_pending_hours}h."
                ),
                details={"synced_at": entry["synced_at"]},
            )
        )
    return findings


# ──────────────────────────────────────────────
# financial
# ──────────────────────────────────────────────


async def _orders_by_number(ctx: AuditContext) -> dict[str, Order]:
    return {o.order_number: o for o in await ctx.store.get_orders()}


async def audit_amount_mismatch(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Booked amount differs from the exchange order total beyond tolerance."""
    orders = await _orders_by_number(ctx)
    findings = []
    for entry in await ctx.store.get_book_entries():
        order = orders.get(entry["order_number"])
        if order is None:
            continue
        variance = abs(order.total_price - entry["booked_amount"])
        if variance <= ctx.settings.amount_tolerance:
            continue
        severity = (
            Severity.CRITICAL
            if variance > ctx.settings.amount_critical_variance
            else Severity.WARNING
        )
        findings.append(
            ctx.finding(
                "amount_mismatch",
                "financial",
                severity,
                asset=order.asset,
                exchange_ref=order.order_number,
                ledger_ref=entry["id"],
                exchange_amount=order.total_price,
                ledger_amount=entry["booked_amount"],
                variance=variance,
                suggested_action="adjust_amount",
                confidence=Decimal("0.90"),
                reasoning=(
                    f"{entry['entry_type'].capitalize()} {order.order_number}: exchange shows "
                    f"{order.total_price} but the ledger booked {entry['booked_amount']}. "
                    f"Variance {variance}."
                ),
                details={
                    "exchange_qty": str(order.amount),
                    "ledger_qty": str(entry["quantity"]),
                },
            )
        )
    return findings


async def audit_fee_variance(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Exchange commission on sales differs from the booked fee."""
    orders = await _orders_by_number(ctx)
    findings = []
    for entry in await ctx.store.get_book_entries():
        if entry["entry_type"] not in _SALE_TYPES:
            continue
        order = orders.get(entry["order_number"])
        if order is None or not order.commission:
            continue
        variance = abs(order.commission - entry["booked_fee"])
        if variance <= ctx.settings.fee_tolerance:
            continue
        severity = (
            Severity.WARNING
            if variance > ctx.settings.fee_warning_variance
            else Severity.REVIEW
        )
        findings.append(
            ctx.finding(
                "fee_variance",
                "fees",
                severity,
                asset=order.asset,
                exchange_ref=order.order_number,
                ledger_ref=entry["id"],
                exchange_amount=order.commission,
                ledger_amount=entry["booked_fee"],
                variance=variance,
                suggested_action="adjust_fee",
                confidence=Decimal("0.88"),
                reasoning=(
                    f"Fee mismatch on {order.order_number}: exchange charged "
                    f"{order.commission} but the ledger booked {entry['booked_fee']}."
                ),
            )
        )
    return findings


# ──────────────────────────────────────────────
# balances
# ──────────────────────────────────────────────


async def audit_negative_balances(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Wallet balances below zero indicate over-deduction."""
    findings = []
    for bal in await ctx.store.get_wallet_balances():
        if bal["balance"] >= 0:
            continue
        findings.append(
            ctx.finding(
                "wallet_balance_gap",
                "balances",
                Severity.CRITICAL,
                asset=bal["asset"],
                ledger_ref=bal["wallet_id"],
                ledger_amount=bal["balance"],
                variance=abs(bal["balance"]),
                suggested_action="wallet_adjustment",
                confidence=Decimal("0.98"),
                reasoning=(
                    f"Wallet {bal['wallet_id']} has a negative {bal['asset']} balance of "
                    f"{bal['balance']}. Likely duplicate debits or a missing deposit."
                ),
            )
        )
    return findings


# ──────────────────────────────────────────────
# movements
# ──────────────────────────────────────────────

_MOVEMENT_RULES = {
    "deposit": (
        "unrecorded_deposit",
        "record_deposit",
        "may not be reflected in wallet balances",
    ),
    "withdrawal": (
        "unrecorded_withdrawal",
        "record_withdrawal",
        "means the wallet balance may be overstated by this amount",
    ),
}


async def audit_unrecorded_movements(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Completed deposits and withdrawals never booked against a wallet."""
    findings = []
    for movement_type, (finding_type, action, impact) in _MOVEMENT_RULES.items():
        movements = await ctx.store.get_movements(
            movement_type=movement_type, status="completed"
        )
        for mv in movements:
            if mv["processed"]:
                continue
            findings.append(
                ctx.finding(
                    finding_type,
                    "movements",
                    Severity.WARNING,
                    asset=mv["asset"],
                    exchange_ref=mv["tx_id"] or mv["id"],
                    exchange_amount=mv["amount"],
                    variance=mv["amount"],
                    suggested_action=action,
                    confidence=Decimal("0.85"),
                    reasoning=(
                        f"{movement_type.capitalize()} of {mv['amount']} {mv['asset']} "
                        f"(network: {mv['network'] or 'N/A'}, fee: {mv['fee']}) is "
                        f"completed but not booked, which {impact}."
                    ),
                    details={
                        "movement_id": mv["id"],
                        "network": mv["network"],
                        "fee": str(mv["fee"]),
                        "movement_time": mv["movement_time"],
                    },
                )
            )
    return findings


# ──────────────────────────────────────────────
# conversions
# ──────────────────────────────────────────────


async def audit_conversion_gaps(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Ledger trades without a conversion, and conversions without a trade."""
    trades = await ctx.store.get_trades()
    conversions = await ctx.store.get_conversions()
    linked = {c["trade_id"] for c in conversions if c["trade_id"] is not None}
    trade_ids = {t.id for t in trades}
    findings = []

    for trade in trades:
        if trade.id in linked:
            continue
        findings.append(
            ctx.finding(
                "conversion_gap",
                "conversions",
                Severity.REVIEW,
                asset=trade.symbol,
                exchange_ref=trade.external_order_id or str(trade.id),
                ledger_ref=str(trade.id),
                exchange_amount=trade.quantity * trade.price,
                suggested_action="record_conversion",
                confidence=Decimal("0.80"),
                reasoning=(
                    f"Trade {trade.symbol} ({trade.side.value}) for {trade.quantity} @ "
                    f"{trade.price} has no linked conversion entry."
                ),
                details={
                    "side": trade.side.value,
                    "commission": str(trade.commission),
                    "commission_asset": trade.commission_asset,
                    "executed_at": trade.executed_at,
                },
            )
        )

    for conv in conversions:
        if conv["status"] != "approved" or conv["source"] == "manual":
            continue
        if conv["trade_id"] is None or conv["trade_id"] in trade_ids:
            continue
        findings.append(
            ctx.finding(
                "conversion_gap",
                "conversions",
                Severity.REVIEW,
                asset=conv["asset"],
                ledger_ref=conv["reference_no"] or conv["id"],
                ledger_amount=conv["quantity"] * conv["price"],
                suggested_action="review_conversion",
                confidence=Decimal("0.75"),
                reasoning=(
                    f"Conversion {conv['reference_no'] or conv['id']} references trade "
                    f"{conv['trade_id']} which is not in the ledger."
                ),
                details={"conversion_id": conv["id"], "trade_id": conv["trade_id"]},
            )
        )
    return findings


# ──────────────────────────────────────────────
# clients
# ──────────────────────────────────────────────


async def audit_similar_counterparties(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Counterparty names that look like spelling variants of one client."""
    prefix_len = ctx.settings.client_prefix_length
    groups: dict[str, set[str]] = defaultdict(set)
    for order in await ctx.store.get_orders():
        name = (order.counterparty or "").strip()
        if name:
            groups[name.lower()[:prefix_len]].add(name)

    findings = []
    for key, names in sorted(groups.items()):
        if len(names) < 2:
            continue
        ordered = sorted(names)
        findings.append(
            ctx.finding(
                "unmapped_client",
                "clients",
                Severity.REVIEW,
                exchange_ref=key,
                suggested_action="merge_clients",
                confidence=Decimal("0.70"),
                reasoning=(
                    "Potential duplicate clients with similar names: "
                    f"{', '.join(ordered)}."
                ),
                details={"names": ordered},
            )
        )
    return findings


# ──────────────────────────────────────────────
# payments
# ──────────────────────────────────────────────


async def audit_payment_method_drift(ctx: AuditContext) -> list[ReconciliationFinding]:
    """Pay methods used on completed orders but missing from the master list."""
    known = {m.lower() for m in await ctx.store.get_payment_methods()}
    counts: dict[str, int] = defaultdict(int)
    for order in await ctx.completed_orders_today():
        method = (order.pay_method or "").strip().lower()
        if method and method not in known:
            counts[method] += 1

    findings = []
    for method, count in sorted(counts.items()):
        if count < ctx.settings.payment_drift_min_occurrences:
            continue
        findings.append(
            ctx.finding(
                "payment_method_drift",
                "payments",
                Severity.INFO,
                exchange_ref=method,
                suggested_action="map_payment_method",
                confidence=Decimal("0.65"),
                reasoning=(
                    f'Payment method "{method}" appears on {count} completed orders '
                    "but is not in the payment methods master."
                ),
                details={"method_name": method, "occurrence_count": count},
            )
        )
    return findings


AUDITS: dict[str, tuple[Audit, ...]] = {
    "orders": (audit_missing_entries, audit_duplicate_entries, audit_stale_pending),
    "financial": (audit_amount_mismatch, audit_fee_variance),
    "balances": (audit_negative_balances,),
    "movements": (audit_unrecorded_movements,),
    "conversions": (audit_conversion_gaps,),
    "clients": (audit_similar_counterparties,),
    "payments": (audit_payment_method_drift,),
}

ALL_SCOPE = "all"
VALID_SCOPES = frozenset({ALL_SCOPE, *AUDITS})
