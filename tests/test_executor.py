"""Tests for the scan executor."""

import pytest

from fakes import FakePool, trivy_report, trivy_vuln
from vscan.core.errors import CommandTimeoutError, ScanParseError
from vscan.core.registry import ScannerRegistry
from vscan.scanning.executor import ScanExecutor, output_file_for


@pytest.fixture
def registry():
    reg = ScannerRegistry()
    reg.discover()
    return reg


def test_output_file_for_sanitizes_item_name():
    path = output_file_for("web 01/prod;rm -rf")
    assert path.startswith("/tmp/vscan-scan-web-01-prod-rm")
    assert " " not in path and ";" not in path
    assert path.endswith(".json")
    assert output_file_for("web01") != output_file_for("web01")


@pytest.mark.asyncio
async def test_scan_parses_report_and_cleans_up(registry):
    pool = FakePool().on("sudo cat", trivy_report(trivy_vuln("CVE-2024-0001"), trivy_vuln("CVE-2024-0002")))
    executor = ScanExecutor(pool, registry)

    outcome = await executor.scan("scan01", "/tmp/Veeam.Mount.FS.abc", "trivy", "web01")

    assert [f.finding_id for f in outcome.findings] == ["CVE-2024-0001", "CVE-2024-0002"]
    scan_cmd, read_cmd, cleanup_cmd = pool.commands
    assert "trivy fs" in scan_cmd and "/tmp/Veeam.Mount.FS.abc" in scan_cmd
    report_file = read_cmd.split()[-1]
    assert report_file in scan_cmd
    assert cleanup_cmd == f"sudo rm -f {report_file}"


@pytest.mark.asyncio
async def test_timeout_still_cleans_up(registry):
    pool = FakePool().on("trivy fs", CommandTimeoutError("Command timed out after 1800s"))
    executor = ScanExecutor(pool, registry)

    with pytest.raises(CommandTimeoutError):
        await executor.scan("scan01", "/tmp/Veeam.Mount.FS.abc", "trivy", "web01")

    assert len(pool.ran("sudo rm -f /tmp/vscan-scan-web01-")) == 1
    assert pool.ran("sudo cat") == []


@pytest.mark.asyncio
async def test_unreadable_report(registry):
    pool = FakePool().on("sudo cat", "")
    executor = ScanExecutor(pool, registry)

    with pytest.raises(ScanParseError):
        await executor.scan("scan01", "/tmp/Veeam.Mount.FS.abc", "grype", "web01")
    assert len(pool.ran("sudo rm -f")) == 1
