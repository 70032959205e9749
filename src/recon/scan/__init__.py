"""Reconciliation -- audit the ledger, accumulate findings, review them."""

from recon.scan.review import FindingReview, FindingSummary, summarize
from recon.scan.scanner import ReconciliationScanner, ScanResult, resolve_scope

__all__ = [
    "FindingReview",
    "FindingSummary",
    "ReconciliationScanner",
    "ScanResult",
    "resolve_scope",
    "summarize",
]
