"""Tests for scanner provisioning."""

from datetime import datetime, timezone

import httpx
import pytest

from fakes import FakePool
from vscan.core.errors import ProvisioningError, UnsupportedPlatformError
from vscan.core.registry import ScannerRegistry
from vscan.provisioning import ProvisioningEngine, ReleaseFeed, detect_os_family, parse_os_release
from vscan.scanners.base import OsFamily

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

UBUNTU = 'NAME="Ubuntu"\nID=ubuntu\nID_LIKE=debian\nVERSION_ID="22.04"\nPRETTY_NAME="Ubuntu 22.04.4 LTS"\n'
ROCKY = 'NAME="Rocky Linux"\nID="rocky"\nID_LIKE="rhel centos fedora"\nVERSION_ID="9.3"\n'
ALPINE = "NAME=\"Alpine Linux\"\nID=alpine\nVERSION_ID=3.19.1\n"

FRESH_DB = "Vulnerability DB:\n  Version: 2\n  UpdatedAt: 2026-10-18 06:13:51.48564297 +0000 UTC\n  NextUpdate: 2026-10-18 18:13:51.48564297 +0000 UTC\n"


class StaticFeed:
    def __init__(self, version):
        self.version = version
        self.lookups = 0

    async def latest_version(self, repository):
        self.lookups += 1
        return self.version


class TrivyHost:
    """Scripted host state: installs and database refreshes change what later commands print."""

    def __init__(self, pool: FakePool, os_release: str = UBUNTU, installed: str | None = None) -> None:
        self.installed = installed
        self.db_fresh = False
        pool.on("cat /etc/os-release", os_release)
        pool.on("--version", lambda cmd: f"Version: {self.installed}\n" if self.installed else "")
        pool.on("trivy version --cache-dir", lambda cmd: FRESH_DB if self.db_fresh else "")
        pool.on("apt-get install", self._install)
        pool.on("rpm -ivh", self._install)
        pool.on("--download-db-only", self._refresh)
        self.target = None

    def _install(self, cmd):
        self.installed = self.target
        return ""

    def _refresh(self, cmd):
        self.db_fresh = True
        return ""


def _engine(pool, feed) -> ProvisioningEngine:
    registry = ScannerRegistry()
    registry.discover()
    return ProvisioningEngine(pool, registry, feed, clock=lambda: NOW)


def test_parse_os_release():
    values = parse_os_release(ROCKY)
    assert values["ID"] == "rocky"
    assert values["ID_LIKE"] == "rhel centos fedora"


def test_detect_os_family():
    assert detect_os_family("ubuntu") is OsFamily.DEBIAN
    assert detect_os_family("rocky") is OsFamily.RHEL
    assert detect_os_family("customos", "rhel fedora") is OsFamily.RHEL
    with pytest.raises(UnsupportedPlatformError):
        detect_os_family("alpine")


@pytest.mark.asyncio
async def test_install_then_idempotent():
    pool = FakePool()
    host = TrivyHost(pool)
    host.target = "0.56.2"
    engine = _engine(pool, StaticFeed("0.56.2"))

    first = await engine.ensure_scanner("scan01", "trivy")
    assert first.actions == ["install", "db_update"]
    assert first.version == "0.56.2"
    assert first.os_family == "debian"
    assert pool.get("scan01").inventory["trivy"]["version"] == "0.56.2"

    second = await engine.ensure_scanner("scan01", "trivy")
    assert second.actions == []
    assert second.changed is False
    assert len(pool.ran("apt-get install")) == 1
    assert len(pool.ran("--download-db-only")) == 1


@pytest.mark.asyncio
async def test_upgrade_on_rhel():
    pool = FakePool()
    host = TrivyHost(pool, os_release=ROCKY, installed="0.50.1")
    host.db_fresh = True
    host.target = "0.56.2"
    engine = _engine(pool, StaticFeed("0.56.2"))

    status = await engine.ensure_scanner("scan01", "trivy")

    assert status.actions == ["upgrade"]
    assert status.version == "0.56.2"
    assert any("trivy_0.56.2_Linux-64bit.rpm" in c for c in pool.ran("curl"))


@pytest.mark.asyncio
async def test_installed_scanner_kept_when_release_feed_is_down():
    pool = FakePool()
    host = TrivyHost(pool, installed="0.50.1")
    host.db_fresh = True
    engine = _engine(pool, StaticFeed(None))

    status = await engine.ensure_scanner("scan01", "trivy")
    assert status.actions == []
    assert status.version == "0.50.1"


@pytest.mark.asyncio
async def test_missing_scanner_without_release_info():
    pool = FakePool()
    TrivyHost(pool)
    engine = _engine(pool, StaticFeed(None))
    with pytest.raises(ProvisioningError):
        await engine.ensure_scanner("scan01", "trivy")


@pytest.mark.asyncio
async def test_unsupported_platform_installs_nothing():
    pool = FakePool()
    TrivyHost(pool, os_release=ALPINE)
    engine = _engine(pool, StaticFeed("0.56.2"))

    with pytest.raises(UnsupportedPlatformError):
        await engine.ensure_scanner("scan01", "trivy")
    assert pool.ran("curl") == []


@pytest.mark.asyncio
async def test_unknown_scanner():
    engine = _engine(FakePool(), StaticFeed("1.0.0"))
    with pytest.raises(ProvisioningError, match="Unknown scanner"):
        await engine.ensure_scanner("scan01", "clair")


@pytest.mark.asyncio
async def test_release_feed_strips_tag_prefix_and_caches():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url.path)
        return httpx.Response(200, json={"tag_name": "v0.56.2"})

    feed = ReleaseFeed("https://api.github.test", transport=httpx.MockTransport(handler))
    assert await feed.latest_version("aquasecurity/trivy") == "0.56.2"
    assert await feed.latest_version("aquasecurity/trivy") == "0.56.2"
    assert requests == ["/repos/aquasecurity/trivy/releases/latest"]


@pytest.mark.asyncio
async def test_release_feed_failure_returns_none():
    feed = ReleaseFeed(
        "https://api.github.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(403, json={"message": "rate limited"})),
    )
    assert await feed.latest_version("anchore/grype") is None
