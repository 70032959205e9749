"""SQLite persistence for reconciliation findings and the scan log.

Findings are inserted one row per commit so each survives independently of
its siblings. Status updates are conditional on the row still being open;
the store never reopens a finding.
"""

import json
import sqlite3
from decimal import Decimal

from recon.data.database import LedgerDatabase
from recon.exceptions import PersistenceConflictError
from recon.logging import get_logger
from recon.models import FindingStatus, ReconciliationFinding, ScanLogEntry, Severity

logger = get_logger(__name__)

_FINDING_COLUMNS = (
    "id, scan_id, category, severity, finding_type, asset, status, exchange_ref, "
    "ledger_ref, exchange_amount, ledger_amount, variance, suggested_action, "
    "confidence, reasoning, details, fingerprint, created_at, feedback_at, feedback_note"
)

_SCAN_LOG_COLUMNS = (
    "id, started_at, finished_at, scope, findings_count, critical_count, "
    "warning_count, review_count, info_count, duration_ms, triggered_by, summary"
)


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _to_dec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def _json_default(value: object) -> str:
    return str(value)


def _row_to_finding(row: tuple) -> ReconciliationFinding:
    return ReconciliationFinding(
        id=row[0],
        scan_id=row[1],
        category=row[2],
        severity=Severity(row[3]),
        finding_type=row[4],
        asset=row[5],
        status=FindingStatus(row[6]),
        exchange_ref=row[7],
        ledger_ref=row[8],
        exchange_amount=_to_dec(row[9]),
        ledger_amount=_to_dec(row[10]),
        variance=_to_dec(row[11]),
        suggested_action=row[12],
        confidence=_to_dec(row[13]),
        reasoning=row[14],
        details=json.loads(row[15]),
        created_at=row[17],
        feedback_at=row[18],
        feedback_note=row[19],
    )


def _row_to_scan_log(row: tuple) -> ScanLogEntry:
    return ScanLogEntry(
        id=row[0],
        started_at=row[1],
        finished_at=row[2],
        scope=json.loads(row[3]),
        findings_count=row[4],
        critical_count=row[5],
        warning_count=row[6],
        review_count=row[7],
        info_count=row[8],
        duration_ms=row[9],
        triggered_by=row[10],
        summary=row[11],
    )


class FindingStore:
    """Async SQLite store for findings and scan log entries."""

    def __init__(self, database: LedgerDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Findings
    # ──────────────────────────────────────────────

    async def insert_finding(self, finding: ReconciliationFinding) -> None:
        """Persist one finding in its own transaction.

        Raises PersistenceConflictError if the id already exists.
        """
        db = self._database.db
        try:
            await db.execute(
                f"INSERT INTO findings ({_FINDING_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    finding.id,
                    finding.scan_id,
                    finding.category,
                    finding.severity.value,
                    finding.finding_type,
                    finding.asset,
                    finding.status.value,
                    finding.exchange_ref,
                    finding.ledger_ref,
                    _dec(finding.exchange_amount),
                    _dec(finding.ledger_amount),
                    _dec(finding.variance),
                    finding.suggested_action,
                    _dec(finding.confidence),
                    finding.reasoning,
                    json.dumps(finding.details, default=_json_default),
                    finding.fingerprint,
                    finding.created_at,
                    finding.feedback_at,
                    finding.feedback_note,
                ),
            )
            await db.commit()
        except sqlite3.IntegrityError as e:
            await db.rollback()
            raise PersistenceConflictError(
                f"Finding {finding.id} already exists"
            ) from e

    async def get_finding(self, finding_id: str) -> ReconciliationFinding | None:
        cursor = await self._database.db.execute(
            f"SELECT {_FINDING_COLUMNS} FROM findings WHERE id = ?", (finding_id,)
        )
        row = await cursor.fetchone()
        return _row_to_finding(row) if row is not None else None

    async def get_findings(
        self,
        status: FindingStatus | None = None,
        scan_id: str | None = None,
    ) -> list[ReconciliationFinding]:
        """Query findings, newest first, optionally filtered by status or scan."""
        conditions: list[str] = []
        params: list = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if scan_id is not None:
            conditions.append("scan_id = ?")
            params.append(scan_id)

        query = f"SELECT {_FINDING_COLUMNS} FROM findings"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, id ASC"

        cursor = await self._database.db.execute(query, params)
        return [_row_to_finding(row) for row in await cursor.fetchall()]

    async def get_fingerprints(self) -> set[str]:
        cursor = await self._database.db.execute("SELECT fingerprint FROM findings")
        return {row[0] for row in await cursor.fetchall()}

    async def update_status(
        self,
        finding_id: str,
        status: FindingStatus,
        feedback_at: int,
        note: str | None = None,
    ) -> bool:
        """Move an open finding to a review status.

        Returns False when no open row with that id exists.
        """
        db = self._database.db
        cursor = await db.execute(
            "UPDATE findings SET status = ?, feedback_at = ?, feedback_note = ? "
            "WHERE id = ? AND status = ?",
            (status.value, feedback_at, note, finding_id, FindingStatus.OPEN.value),
        )
        await db.commit()
        return cursor.rowcount == 1

    # ──────────────────────────────────────────────
    # Scan log
    # ──────────────────────────────────────────────

    async def insert_scan_log(self, entry: ScanLogEntry) -> None:
        db = self._database.db
        try:
            await db.execute(
                f"INSERT INTO scan_log ({_SCAN_LOG_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.started_at,
                    entry.finished_at,
                    json.dumps(entry.scope),
                    entry.findings_count,
                    entry.critical_count,
                    entry.warning_count,
                    entry.review_count,
                    entry.info_count,
                    entry.duration_ms,
                    entry.triggered_by,
                    entry.summary,
                ),
            )
            await db.commit()
        except sqlite3.IntegrityError as e:
            await db.rollback()
            raise PersistenceConflictError(f"Scan log {entry.id} already exists") from e

    async def get_scan_log(self, limit: int = 50) -> list[ScanLogEntry]:
        cursor = await self._database.db.execute(
            f"SELECT {_SCAN_LOG_COLUMNS} FROM scan_log "
            "ORDER BY started_at DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_scan_log(row) for row in await cursor.fetchall()]
