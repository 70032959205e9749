"""Custom exceptions for the ledger reconciliation engine.

All sync, scan, review and alert exceptions live here to avoid circular
imports between modules.
"""


class ReconError(Exception):
    """Base exception for all engine errors."""


class TransientNetworkError(ReconError):
    """Raised when the exchange or backend gateway is unreachable.

    Never fatal: the next scheduled cycle retries naturally.
    """


class ValidationError(ReconError):
    """Raised when a request violates a business rule. Nothing is written."""


class ReconciliationDisabled(ValidationError):
    """Raised when a scan is requested while reconciliation is switched off."""


class InvalidFindingTransition(ValidationError):
    """Raised when a finding review would move its status backwards or sideways."""


class PersistenceConflictError(ReconError):
    """Raised when a write hits an existing unique key outside the ingestion path."""


class FindingNotFound(ReconError):
    """Raised when a finding id does not exist."""
