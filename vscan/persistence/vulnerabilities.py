"""Vulnerability persistence — scan records, upserts and history.

All writes for one scan (finding upserts, history rows, the final scan
status) happen in a single transaction: either every row of the scan is
stored or none is.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vscan.core.errors import PersistenceError, VScanError
from vscan.core.logging import get_logger
from vscan.models.base import as_utc, utcnow
from vscan.models.scan_record import ScanRecord
from vscan.models.vulnerability import VULNERABILITY_STATUSES, Vulnerability, VulnerabilityHistory
from vscan.scanners.reports import Finding, count_by_severity

logger = get_logger(__name__)


def _dedupe(findings: Iterable[Finding]) -> list[Finding]:
    unique: dict[tuple[str, str, str], Finding] = {}
    for finding in findings:
        unique.setdefault(finding.key, finding)
    return list(unique.values())


class VulnerabilityStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    # ── Scan records ─────────────────────────────────────────────────────────

    async def start_scan(
        self, host: str, item_name: str, scanner_type: str, batch_id: str | None = None
    ) -> uuid.UUID:
        async with self._factory() as session:
            record = ScanRecord(
                host=host,
                item_name=item_name,
                scanner_type=scanner_type,
                batch_id=batch_id,
                status="in_progress",
                started_at=utcnow(),
            )
            session.add(record)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Could not create scan record: {exc}") from exc
            return record.id

    async def record_scan(
        self,
        scan_id: uuid.UUID,
        findings: list[Finding],
        *,
        kev: frozenset[str] = frozenset(),
        duration_ms: int | None = None,
        scanned_at: datetime | None = None,
    ) -> ScanRecord:
        """Upsert *findings* and complete the scan record in one transaction."""
        scanned_at = scanned_at or utcnow()
        async with self._factory() as session:
            try:
                record = await self._load_open_scan(session, scan_id)
                unique = await self._upsert_in(session, record, findings, kev, scanned_at)
                counts = count_by_severity(unique)
                record.total_count = counts["total"]
                record.critical_count = counts["critical"]
                record.high_count = counts["high"]
                record.medium_count = counts["medium"]
                record.low_count = counts["low"]
                record.duration_ms = duration_ms
                record.status = "completed"
                record.finished_at = utcnow()
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Could not store scan results: {exc}") from exc
            except VScanError:
                await session.rollback()
                raise
            logger.info("Scan results stored", scan_id=str(scan_id), findings=len(unique))
            return record

    async def upsert(
        self,
        scan_id: uuid.UUID,
        findings: list[Finding],
        *,
        kev: frozenset[str] = frozenset(),
        scanned_at: datetime | None = None,
    ) -> int:
        """Upsert findings for an existing scan without finalizing it."""
        async with self._factory() as session:
            try:
                record = await self._load_open_scan(session, scan_id)
                unique = await self._upsert_in(session, record, findings, kev, scanned_at or utcnow())
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Could not store findings: {exc}") from exc
            return len(unique)

    async def fail_scan(
        self,
        scan_id: uuid.UUID,
        error: str,
        *,
        kind: str | None = None,
        status: str = "failed",
        duration_ms: int | None = None,
    ) -> bool:
        """Finalize a scan as failed/cancelled; returns ``False`` if it was already final."""
        async with self._factory() as session:
            record = await session.get(ScanRecord, scan_id)
            if record is None or record.is_final:
                return False
            record.status = status
            record.error_kind = kind
            record.error_msg = error
            record.duration_ms = duration_ms
            record.finished_at = utcnow()
            await session.commit()
            return True

    async def _load_open_scan(self, session: AsyncSession, scan_id: uuid.UUID) -> ScanRecord:
        record = await session.get(ScanRecord, scan_id)
        if record is None:
            raise PersistenceError(f"Scan record not found: {scan_id}")
        if record.is_final:
            raise PersistenceError(f"Scan {scan_id} is already {record.status}")
        return record

    async def _upsert_in(
        self,
        session: AsyncSession,
        record: ScanRecord,
        findings: list[Finding],
        kev: frozenset[str],
        scanned_at: datetime,
    ) -> list[Finding]:
        unique = _dedupe(findings)
        for finding in unique:
            result = await session.execute(
                select(Vulnerability).where(
                    Vulnerability.finding_id == finding.finding_id,
                    Vulnerability.package_name == finding.package_name,
                    Vulnerability.installed_version == finding.installed_version,
                    Vulnerability.item_name == record.item_name,
                )
            )
            vuln = result.scalar_one_or_none()
            if vuln is None:
                vuln = Vulnerability(
                    finding_id=finding.finding_id,
                    package_name=finding.package_name,
                    installed_version=finding.installed_version,
                    item_name=record.item_name,
                    scanner_type=record.scanner_type,
                    status="pending",
                    in_kev=finding.finding_id in kev,
                    first_discovered=scanned_at,
                    last_seen=scanned_at,
                )
                session.add(vuln)
            else:
                vuln.first_discovered = min(as_utc(vuln.first_discovered), scanned_at)
                vuln.last_seen = max(as_utc(vuln.last_seen), scanned_at)
                vuln.in_kev = vuln.in_kev or finding.finding_id in kev
                vuln.scanner_type = record.scanner_type

            vuln.severity = finding.severity
            vuln.fixed_version = finding.fixed_version or vuln.fixed_version
            vuln.description = finding.description or vuln.description
            if finding.references:
                vuln.reference_links = ", ".join(finding.references)
            vuln.published_date = finding.published_date or vuln.published_date
            vuln.package_path = finding.package_path or vuln.package_path
            vuln.last_scan_id = record.id
            await session.flush()

            session.add(
                VulnerabilityHistory(
                    vulnerability_id=vuln.id,
                    scan_id=record.id,
                    scan_date=scanned_at,
                    severity=finding.severity,
                    fixed_version=finding.fixed_version,
                )
            )
        return unique

    # ── Queries & user actions ───────────────────────────────────────────────

    async def list(
        self,
        *,
        search: str | None = None,
        severity: str | None = None,
        item_name: str | None = None,
        scanner_type: str | None = None,
        status: str | None = None,
        in_kev: bool | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[int, list[Vulnerability]]:
        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(Vulnerability.finding_id.ilike(pattern), Vulnerability.package_name.ilike(pattern))
            )
        if severity:
            conditions.append(Vulnerability.severity == severity.upper())
        if item_name:
            conditions.append(Vulnerability.item_name == item_name)
        if scanner_type:
            conditions.append(Vulnerability.scanner_type == scanner_type)
        if status:
            conditions.append(Vulnerability.status == status)
        if in_kev is not None:
            conditions.append(Vulnerability.in_kev.is_(in_kev))

        async with self._factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(Vulnerability).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(Vulnerability)
                .where(*conditions)
                .order_by(Vulnerability.last_seen.desc(), Vulnerability.finding_id)
                .offset(skip)
                .limit(limit)
            )
            return total, list(result.scalars())

    async def get(self, vulnerability_id: uuid.UUID) -> Vulnerability | None:
        async with self._factory() as session:
            return await session.get(Vulnerability, vulnerability_id)

    async def history(self, vulnerability_id: uuid.UUID) -> list[VulnerabilityHistory]:
        async with self._factory() as session:
            result = await session.execute(
                select(VulnerabilityHistory)
                .where(VulnerabilityHistory.vulnerability_id == vulnerability_id)
                .order_by(VulnerabilityHistory.scan_date)
            )
            return list(result.scalars())

    async def set_status(self, vulnerability_id: uuid.UUID, status: str) -> Vulnerability | None:
        if status not in VULNERABILITY_STATUSES:
            raise VScanError("invalid_status", f"Unknown status {status!r}", details={"allowed": VULNERABILITY_STATUSES})
        async with self._factory() as session:
            vuln = await session.get(Vulnerability, vulnerability_id)
            if vuln is None:
                return None
            vuln.status = status
            await session.commit()
            await session.refresh(vuln)
            return vuln

    async def get_scan(self, scan_id: uuid.UUID) -> ScanRecord | None:
        async with self._factory() as session:
            return await session.get(ScanRecord, scan_id)

    async def list_scans(
        self, *, item_name: str | None = None, batch_id: str | None = None, skip: int = 0, limit: int = 50
    ) -> tuple[int, list[ScanRecord]]:
        conditions = []
        if item_name:
            conditions.append(ScanRecord.item_name == item_name)
        if batch_id:
            conditions.append(ScanRecord.batch_id == batch_id)
        async with self._factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(ScanRecord).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(ScanRecord).where(*conditions).order_by(ScanRecord.started_at.desc()).offset(skip).limit(limit)
            )
            return total, list(result.scalars())
