"""Order status normalizer -- raw exchange status + trade side to canonical lifecycle.

Two pure stages:
  1. normalize_raw_status: numeric exchange codes -> uppercase token via a
     fixed table, free text -> uppercased passthrough.
  2. canonical_status: (token, side) -> CanonicalStatus via ordered substring
     rules, first match wins.

Terminal rules are side-agnostic and checked first. The payment-confirmed
signal is side-asymmetric: on a SELL order we hold the asset and the release
is ours to perform (Pending Release); on a BUY order the counterparty is
releasing to us (Releasing).
"""

from enum import Enum


class CanonicalStatus(str, Enum):
    """Canonical order lifecycle state."""

    PENDING_PAYMENT = "Pending Payment"
    RELEASING = "Releasing"
    PENDING_RELEASE = "Pending Release"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"
    UNDER_APPEAL = "Under Appeal"


STATUS_CODES: dict[int, str] = {
    1: "PENDING",
    2: "TRADING",
    3: "BUYER_PAYED",
    4: "BUYER_PAYED",
    5: "COMPLETED",
    6: "APPEAL",
    7: "CANCELLED",
    8: "CANCELLED",
}

_UNKNOWN_CODE_TOKEN = "TRADING"

# Ordered: first matching substring wins.
_TERMINAL_RULES: tuple[tuple[str, CanonicalStatus], ...] = (
    ("COMPLETED", CanonicalStatus.COMPLETED),
    ("CANCEL", CanonicalStatus.CANCELLED),
    ("EXPIRE", CanonicalStatus.EXPIRED),
    ("TIMEOUT", CanonicalStatus.EXPIRED),
    ("APPEAL", CanonicalStatus.UNDER_APPEAL),
)

_PAYMENT_CONFIRMED_MARKERS: tuple[str, ...] = ("BUYER_PAYED", "PAYED", "PAID")

TERMINAL_STATUSES = frozenset(
    {
        CanonicalStatus.COMPLETED,
        CanonicalStatus.CANCELLED,
        CanonicalStatus.EXPIRED,
    }
)


def normalize_raw_status(raw: int | str | None) -> str:
    """Map a raw numeric code or free-text status to an uppercase token.

    Numeric codes (ints or digit-only strings) go through STATUS_CODES;
    unknown codes map to TRADING. Anything else is stripped and uppercased.
    """
    if raw is None:
        return ""
    if isinstance(raw, bool):
        raw = int(raw)
    if isinstance(raw, int):
        return STATUS_CODES.get(raw, _UNKNOWN_CODE_TOKEN)
    text = str(raw).strip()
    if text.isdigit():
        return STATUS_CODES.get(int(text), _UNKNOWN_CODE_TOKEN)
    return text.upper()


def _is_sell(side: str | None) -> bool:
    return str(side or "").strip().upper() == "SELL"


def canonical_status(raw: int | str | None, side: str | None) -> CanonicalStatus:
    """Return the canonical lifecycle state for a raw status and trade side.

    Args:
        raw: Exchange status code or text (e.g. 3, "BUYER_PAYED", "completed").
        side: Our side of the order, "BUY" or "SELL" (case-insensitive).
              Side enums whose value is a string are accepted as well.

    Returns:
        CanonicalStatus. Pending Payment when no rule matches.
    """
    token = normalize_raw_status(raw)
    side_value = getattr(side, "value", side)

    for marker, status in _TERMINAL_RULES:
        if marker in token:
            return status

    for marker in _PAYMENT_CONFIRMED_MARKERS:
        if marker in token:
            if _is_sell(side_value):
                return CanonicalStatus.PENDING_RELEASE
            return CanonicalStatus.RELEASING

    return CanonicalStatus.PENDING_PAYMENT


def is_terminal(status: CanonicalStatus) -> bool:
    """True for lifecycle states that never produce further alerts."""
    return status in TERMINAL_STATUSES
