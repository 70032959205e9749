"""Ledger persistence layer.

Provides SQLite database management and typed read/write stores for the
trade ledger, its companion tables, reconciliation findings and scan log.
"""

from recon.data.database import LedgerDatabase
from recon.data.findings import FindingStore
from recon.data.store import LedgerStore

__all__ = [
    "FindingStore",
    "LedgerDatabase",
    "LedgerStore",
]
