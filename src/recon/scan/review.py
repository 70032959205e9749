"""Operator review of findings and the read-side summary."""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from recon.data.findings import FindingStore
from recon.exceptions import FindingNotFound, InvalidFindingTransition
from recon.logging import get_logger
from recon.models import FindingStatus, ReconciliationFinding

logger = get_logger(__name__)


@dataclass
class FindingSummary:
    """Aggregate counts, recomputed from finding rows on every query."""

    total_open: int = 0
    total_acknowledged: int = 0
    total_resolved: int = 0
    open_by_category: dict[str, int] = field(default_factory=dict)
    open_by_severity: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_open": self.total_open,
            "total_acknowledged": self.total_acknowledged,
            "total_resolved": self.total_resolved,
            "open_by_category": self.open_by_category,
            "open_by_severity": self.open_by_severity,
        }


def summarize(findings: Iterable[ReconciliationFinding]) -> FindingSummary:
    """Pure reduction over findings."""
    statuses: Counter[FindingStatus] = Counter()
    by_category: Counter[str] = Counter()
    by_severity: Counter[str] = Counter()
    for f in findings:
        statuses[f.status] += 1
        if f.status == FindingStatus.OPEN:
            by_category[f.category] += 1
            by_severity[f.severity.value] += 1
    return FindingSummary(
        total_open=statuses[FindingStatus.OPEN],
        total_acknowledged=statuses[FindingStatus.ACKNOWLEDGED],
        total_resolved=statuses[FindingStatus.RESOLVED],
        open_by_category=dict(by_category),
        open_by_severity=dict(by_severity),
    )


class FindingReview:
    """Applies operator feedback to findings.

    Only open findings can move, and only to acknowledged or resolved.
    """

    def __init__(
        self, findings: FindingStore, clock: Callable[[], float] = time.time
    ) -> None:
        self._findings = findings
        self._clock = clock

    async def acknowledge(
        self, finding_id: str, note: str | None = None
    ) -> ReconciliationFinding:
        return await self.review(finding_id, FindingStatus.ACKNOWLEDGED, note)

    async def resolve(
        self, finding_id: str, note: str | None = None
    ) -> ReconciliationFinding:
        return await self.review(finding_id, FindingStatus.RESOLVED, note)

    async def review(
        self,
        finding_id: str,
        status: FindingStatus,
        note: str | None = None,
    ) -> ReconciliationFinding:
        """Move an open finding to status and return the updated finding.

        Raises:
            FindingNotFound: Unknown id.
            InvalidFindingTransition: Target is OPEN or the finding is no longer open.
        """
        if status == FindingStatus.OPEN:
            raise InvalidFindingTransition("Findings cannot be reopened")

        current = await self._findings.get_finding(finding_id)
        if current is None:
            raise FindingNotFound(f"Finding {finding_id} not found")
        if current.status != FindingStatus.OPEN:
            raise InvalidFindingTransition(
                f"Finding {finding_id} is {current.status.value}, not open"
            )

        feedback_at = int(self._clock() * 1000)
        updated = await self._findings.update_status(finding_id, status, feedback_at, note)
        if not updated:
            # Lost a race with another reviewer.
            raise InvalidFindingTransition(f"Finding {finding_id} is no longer open")

        logger.info(
            "finding_reviewed",
            finding_id=finding_id,
            status=status.value,
            finding_type=current.finding_type,
        )
        current.status = status
        current.feedback_at = feedback_at
        current.feedback_note = note
        return current

    async def list_findings(
        self, status: FindingStatus | None = None
    ) -> list[ReconciliationFinding]:
        return await self._findings.get_findings(status=status)

    async def get_summary(self) -> FindingSummary:
        return summarize(await self._findings.get_findings())
