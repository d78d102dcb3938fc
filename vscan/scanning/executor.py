"""Running one scanner against one mounted path."""

from __future__ import annotations

import re
import shlex
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vscan.core.errors import VScanError
from vscan.core.logging import get_logger
from vscan.core.registry import ScannerRegistry
from vscan.scanners.reports import Finding, Report, parse_report

if TYPE_CHECKING:
    from vscan.remote.pool import SessionPool

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class ScanOutcome:
    scanner: str
    target: str
    report: Report
    findings: list[Finding]
    duration_ms: int


def output_file_for(item_name: str) -> str:
    slug = _UNSAFE_CHARS.sub("-", item_name).strip("-")[:64] or "item"
    return f"/tmp/vscan-scan-{slug}-{uuid.uuid4().hex[:12]}.json"


class ScanExecutor:
    def __init__(self, pool: "SessionPool", registry: ScannerRegistry, *, scan_timeout: float = 1800.0) -> None:
        self.pool = pool
        self.registry = registry
        self.scan_timeout = scan_timeout

    async def scan(self, host: str, target: str, scanner_name: str, item_name: str) -> ScanOutcome:
        """Scan *target* on *host*; the report file is removed whatever happens."""
        scanner = self.registry.create(scanner_name)
        output_file = output_file_for(item_name)
        log = logger.bind(host=host, scanner=scanner_name, item=item_name)
        started = time.monotonic()
        try:
            log.info("Scan started", target=target)
            await self.pool.execute(host, scanner.scan_command(target, output_file), timeout=self.scan_timeout)
            raw = await self.pool.execute(host, f"sudo cat {shlex.quote(output_file)}", silent=True)
            report, findings = parse_report(raw)
        finally:
            await self._cleanup(host, output_file)

        duration_ms = int((time.monotonic() - started) * 1000)
        log.info("Scan finished", findings=len(findings), duration_ms=duration_ms)
        return ScanOutcome(
            scanner=scanner_name,
            target=target,
            report=report,
            findings=findings,
            duration_ms=duration_ms,
        )

    async def _cleanup(self, host: str, output_file: str) -> None:
        try:
            await self.pool.execute(host, f"sudo rm -f {shlex.quote(output_file)}", check=False, silent=True)
        except VScanError as exc:
            logger.warning("Could not remove scan report file", host=host, path=output_file, error=str(exc))
