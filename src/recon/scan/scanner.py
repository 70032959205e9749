"""Reconciliation scanner: runs audit domains against the ledger and records findings.

A scan is all-or-nothing with respect to detection: findings are collected in
memory while every selected audit runs, and only when all audits succeed are
the new findings inserted and a single scan log entry written. Prior findings
are never cleared; a finding whose fingerprint was already recorded by any
earlier scan is not recorded again.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from recon.config import ScanSettings
from recon.data.findings import FindingStore
from recon.data.store import LedgerStore
from recon.exceptions import ReconciliationDisabled, ValidationError
from recon.logging import get_logger, log_context
from recon.models import ReconciliationFinding, ScanLogEntry, Severity
from recon.scan.audits import ALL_SCOPE, AUDITS, VALID_SCOPES, AuditContext

logger = get_logger(__name__)

ENABLED_SETTING_KEY = "reconciliation_enabled"


@dataclass
class ScanResult:
    """Outcome of one successful scan."""

    scan_id: str
    scope: list[str]
    findings_count: int
    critical_count: int
    warning_count: int
    review_count: int
    info_count: int
    detected_count: int
    duration_ms: int
    summary: str
    findings: list[ReconciliationFinding] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scan_id": self.scan_id,
            "scope": self.scope,
            "findings_count": self.findings_count,
            "critical_count": self.critical_count,
            "warning_count": self.warning_count,
            "review_count": self.review_count,
            "info_count": self.info_count,
            "detected_count": self.detected_count,
            "duration_ms": self.duration_ms,
            "summary": self.summary,
        }


def resolve_scope(scope: Iterable[str] | None) -> tuple[list[str], list[str]]:
    """Validate a requested scope.

    Returns (requested scope as given, audit domains to run in registry order).
    Raises ValidationError on an empty scope or unknown domain.
    """
    requested = [s.strip().lower() for s in ([ALL_SCOPE] if scope is None else scope)]
    if not requested:
        raise ValidationError("Scan scope must not be empty")
    unknown = sorted(set(requested) - VALID_SCOPES)
    if unknown:
        raise ValidationError(
            f"Unknown scan scope: {', '.join(unknown)}. "
            f"Valid: {', '.join(sorted(VALID_SCOPES))}"
        )
    if ALL_SCOPE in requested:
        return requested, list(AUDITS)
    return requested, [domain for domain in AUDITS if domain in requested]


def _count(findings: list[ReconciliationFinding], severity: Severity) -> int:
    return sum(1 for f in findings if f.severity == severity)


class ReconciliationScanner:
    """Runs reconciliation audits and appends their findings.

    Stateless per invocation: concurrent scans are allowed and each writes
    its own scan log entry.

    Args:
        store: Ledger store the audits read from.
        findings: Finding and scan log persistence.
        settings: Thresholds and the enable default.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        store: LedgerStore,
        findings: FindingStore,
        settings: ScanSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._findings = findings
        self._settings = settings
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def is_enabled(self) -> bool:
        """Feature gate: ledger setting first, configured default otherwise."""
        value = await self._store.get_setting(ENABLED_SETTING_KEY)
        if value is None:
            return self._settings.enabled
        return value.strip().lower() in ("true", "1", "yes", "on")

    async def scan(
        self,
        scope: Iterable[str] | None = None,
        triggered_by: str = "system",
    ) -> ScanResult:
        """Run the audits selected by scope and record new findings.

        Raises:
            ValidationError: Unknown scope.
            ReconciliationDisabled: The feature gate is off.
        """
        requested, domains = resolve_scope(scope)
        if not await self.is_enabled():
            raise ReconciliationDisabled("Reconciliation is disabled")

        scan_id = str(uuid.uuid4())
        started_at = self._now_ms()

        with log_context(scan_id=scan_id):
            logger.info("reconciliation_scan_started", scope=requested, triggered_by=triggered_by)
            ctx = AuditContext(
                store=self._store,
                settings=self._settings,
                scan_id=scan_id,
                now_ms=started_at,
            )

            detected: list[ReconciliationFinding] = []
            try:
                for domain in domains:
                    for audit in AUDITS[domain]:
                        detected.extend(await audit(ctx))
            except Exception:
                logger.error("reconciliation_scan_failed", exc_info=True)
                raise

            seen = await self._findings.get_fingerprints()
            new_findings: list[ReconciliationFinding] = []
            for finding in detected:
                if finding.fingerprint in seen:
                    continue
                seen.add(finding.fingerprint)
                new_findings.append(finding)

            for finding in new_findings:
                await self._findings.insert_finding(finding)

            finished_at = max(self._now_ms(), started_at)
            critical = _count(new_findings, Severity.CRITICAL)
            warning = _count(new_findings, Severity.WARNING)
            review = _count(new_findings, Severity.REVIEW)
            info = _count(new_findings, Severity.INFO)
            summary = (
                f"Scanned {', '.join(domains)}: {len(new_findings)} new findings "
                f"({critical} critical, {warning} warning, {review} review, {info} info), "
                f"{len(detected) - len(new_findings)} already recorded."
            )

            await self._findings.insert_scan_log(
                ScanLogEntry(
                    id=scan_id,
                    started_at=started_at,
                    finished_at=finished_at,
                    scope=requested,
                    findings_count=len(new_findings),
                    critical_count=critical,
                    warning_count=warning,
                    review_count=review,
                    info_count=info,
                    duration_ms=finished_at - started_at,
                    triggered_by=triggered_by,
                    summary=summary,
                )
            )

            logger.info(
                "reconciliation_scan_complete",
                detected=len(detected),
                recorded=len(new_findings),
                critical=critical,
                duration_ms=finished_at - started_at,
            )

        return ScanResult(
            scan_id=scan_id,
            scope=requested,
            findings_count=len(new_findings),
            critical_count=critical,
            warning_count=warning,
            review_count=review,
            info_count=info,
            detected_count=len(detected),
            duration_ms=finished_at - started_at,
            summary=summary,
            findings=new_findings,
        )
