"""Scan batches: mount each backup item, scan it, store the findings, unmount.

Items are processed one after another. A failing item is recorded and the
batch moves on to the next one.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from vscan.core.errors import InternalError, JobCancelledError, VScanError
from vscan.core.logging import get_logger
from vscan.mounting.jobs import CancelToken, PublishJob, PublishRequest
from vscan.models.base import utcnow

if TYPE_CHECKING:
    from vscan.mounting.publisher import MountCoordinator
    from vscan.mounting.unmount import UnmountController
    from vscan.persistence.kev import KevCatalog
    from vscan.persistence.vulnerabilities import VulnerabilityStore
    from vscan.provisioning import ProvisioningEngine
    from vscan.scanning.executor import ScanExecutor

logger = get_logger(__name__)


@dataclass
class BatchItem:
    item_name: str
    restore_point_id: str
    disk_names: list[str] = field(default_factory=list)


@dataclass
class ScanSummary:
    scanner: str
    scan_id: str | None
    status: str
    findings: int = 0
    error: dict[str, Any] | None = None


@dataclass
class ItemOutcome:
    item_name: str
    status: str = "completed"
    job_id: str | None = None
    mount_points: dict[str, str] = field(default_factory=dict)
    scans: list[ScanSummary] = field(default_factory=list)
    error: dict[str, Any] | None = None
    unmounted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_name": self.item_name,
            "status": self.status,
            "job_id": self.job_id,
            "mount_points": self.mount_points,
            "scans": [vars(s) for s in self.scans],
            "error": self.error,
            "unmounted": self.unmounted,
        }


@dataclass
class BatchResult:
    batch_id: str
    host: str
    scanners: list[str]
    items: list[ItemOutcome] = field(default_factory=list)
    kev_entries: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status == "completed")

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "host": self.host,
            "scanners": self.scanners,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "kev_entries": self.kev_entries,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "items": [i.to_dict() for i in self.items],
        }


class ScanBatchRunner:
    def __init__(
        self,
        coordinator: "MountCoordinator",
        unmount: "UnmountController",
        provisioning: "ProvisioningEngine",
        executor: "ScanExecutor",
        store: "VulnerabilityStore",
        kev: "KevCatalog",
    ) -> None:
        self.coordinator = coordinator
        self.unmount = unmount
        self.provisioning = provisioning
        self.executor = executor
        self.store = store
        self.kev = kev

    async def run(
        self,
        host: str,
        items: list[BatchItem],
        scanners: list[str],
        *,
        batch_id: str | None = None,
        cancel: CancelToken | None = None,
        keep_mounted: bool = False,
    ) -> BatchResult:
        result = BatchResult(batch_id=batch_id or str(uuid.uuid4()), host=host, scanners=list(scanners))
        log = logger.bind(batch_id=result.batch_id, host=host)
        log.info("Scan batch started", items=len(items), scanners=scanners)

        kev = await self.kev.fetch()
        result.kev_entries = len(kev)
        provisioned: dict[str, VScanError | None] = {}

        for item in items:
            if cancel is not None and cancel.cancelled:
                error = JobCancelledError("Batch cancelled", details={"batch_id": result.batch_id})
                result.items.append(ItemOutcome(item_name=item.item_name, status="cancelled", error=error.to_dict()))
                continue
            outcome = await self._run_item(host, item, scanners, result.batch_id, kev, provisioned, cancel, keep_mounted)
            result.items.append(outcome)

        result.finished_at = utcnow()
        log.info("Scan batch finished", succeeded=result.succeeded, failed=result.failed)
        return result

    async def _run_item(
        self,
        host: str,
        item: BatchItem,
        scanners: list[str],
        batch_id: str,
        kev: frozenset[str],
        provisioned: dict[str, VScanError | None],
        cancel: CancelToken | None,
        keep_mounted: bool,
    ) -> ItemOutcome:
        outcome = ItemOutcome(item_name=item.item_name)
        log = logger.bind(batch_id=batch_id, host=host, item=item.item_name)

        request = PublishRequest(
            item_name=item.item_name,
            restore_point_id=item.restore_point_id,
            disk_names=list(item.disk_names),
            target_host=host,
        )
        try:
            job = await self.coordinator.mount(request, cancel)
        except Exception as exc:
            error = _as_vscan_error(exc)
            log.warning("Item could not be mounted", kind=error.kind, error=str(error))
            outcome.status = "cancelled" if isinstance(error, JobCancelledError) else "failed"
            outcome.error = error.to_dict()
            return outcome

        outcome.job_id = job.id
        outcome.mount_points = dict(job.mount_points)
        try:
            for scanner in scanners:
                summary = await self._scan_with(host, job, scanner, batch_id, kev, provisioned, cancel)
                outcome.scans.append(summary)
        finally:
            if not keep_mounted:
                outcome.unmounted = await self._release(job)

        statuses = {s.status for s in outcome.scans}
        if statuses - {"completed"}:
            outcome.status = "cancelled" if statuses == {"cancelled"} else "failed"
        return outcome

    async def _scan_with(
        self,
        host: str,
        job: PublishJob,
        scanner: str,
        batch_id: str,
        kev: frozenset[str],
        provisioned: dict[str, VScanError | None],
        cancel: CancelToken | None,
    ) -> ScanSummary:
        item_name = job.request.item_name
        summary = ScanSummary(scanner=scanner, scan_id=None, status="in_progress")
        started = time.monotonic()
        scan_id = None
        try:
            scan_id = await self.store.start_scan(host, item_name, scanner, batch_id)
            summary.scan_id = str(scan_id)
            if cancel is not None and cancel.cancelled:
                raise JobCancelledError("Batch cancelled", details={"batch_id": batch_id})
            await self._provision_once(host, scanner, provisioned)

            findings = []
            scanned_at = utcnow()
            for root in sorted(set(job.mount_points.values())):
                scanned = await self.executor.scan(host, root, scanner, item_name)
                findings.extend(scanned.findings)

            duration_ms = int((time.monotonic() - started) * 1000)
            record = await self.store.record_scan(
                scan_id, findings, kev=kev, duration_ms=duration_ms, scanned_at=scanned_at
            )
            summary.status = "completed"
            summary.findings = record.total_count
        except Exception as exc:
            error = _as_vscan_error(exc)
            status = "cancelled" if isinstance(error, JobCancelledError) else "failed"
            logger.warning("Scan failed", host=host, item=item_name, scanner=scanner, kind=error.kind, error=str(error))
            summary.status = status
            summary.error = error.to_dict()
            if scan_id is not None:
                await self._finalize_failed(scan_id, error, status, int((time.monotonic() - started) * 1000))
        return summary

    async def _finalize_failed(self, scan_id: Any, error: VScanError, status: str, duration_ms: int) -> None:
        try:
            await self.store.fail_scan(scan_id, str(error), kind=error.kind, status=status, duration_ms=duration_ms)
        except Exception:
            logger.exception("Could not mark scan as failed", scan_id=str(scan_id))

    async def _provision_once(self, host: str, scanner: str, provisioned: dict[str, VScanError | None]) -> None:
        if scanner not in provisioned:
            try:
                await self.provisioning.ensure_scanner(host, scanner)
                provisioned[scanner] = None
            except VScanError as exc:
                provisioned[scanner] = exc
                raise
        error = provisioned[scanner]
        if error is not None:
            raise error

    async def _release(self, job: PublishJob) -> bool:
        try:
            await self.unmount.unmount(job.id)
            return True
        except Exception as exc:
            error = _as_vscan_error(exc)
            logger.warning("Unmount after scan failed", job_id=job.id, kind=error.kind, error=str(error))
            return False


def _as_vscan_error(exc: Exception) -> VScanError:
    if isinstance(exc, VScanError):
        return exc
    logger.error("Unexpected error in scan batch", exc_info=exc)
    return InternalError.wrap(exc)
