"""Scanner provisioning — keep scanner binaries and databases current on a scan host.

``ensure_scanner`` is idempotent: a second call with no upstream release in
between performs no install and no database refresh.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from vscan.core.errors import ProvisioningError, UnsupportedPlatformError
from vscan.core.logging import get_logger
from vscan.core.registry import ScannerRegistry
from vscan.core.versions import is_newer
from vscan.models.base import utcnow
from vscan.scanners.base import OsFamily

if TYPE_CHECKING:
    from vscan.persistence.hosts import HostStore
    from vscan.remote.pool import SessionPool

logger = get_logger(__name__)

_RHEL_IDS = {"rhel", "centos", "rocky", "almalinux", "fedora", "ol", "amzn"}
_DEBIAN_IDS = {"debian", "ubuntu", "linuxmint", "pop", "raspbian"}


@dataclass
class OsInfo:
    family: OsFamily
    id: str
    version: str
    pretty_name: str


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in (text or "").splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def detect_os_family(os_id: str, id_like: str = "") -> OsFamily:
    """Map an os-release ``ID`` (falling back to ``ID_LIKE``) to a supported family."""
    candidates = [os_id.lower(), *id_like.lower().split()]
    for candidate in candidates:
        if candidate in _RHEL_IDS:
            return OsFamily.RHEL
        if candidate in _DEBIAN_IDS:
            return OsFamily.DEBIAN
    raise UnsupportedPlatformError(
        f"Unsupported platform: {os_id or 'unknown'}", details={"id": os_id, "id_like": id_like}
    )


class ReleaseFeed:
    """Latest release versions from the GitHub releases API.

    Results are cached for ``ttl`` seconds so a batch asks GitHub once per tool.
    """

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        *,
        timeout: float = 30.0,
        ttl: float = 3600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.ttl = ttl
        self._transport = transport
        self._cache: dict[str, tuple[float, str]] = {}

    async def latest_version(self, repository: str) -> str | None:
        cached = self._cache.get(repository)
        if cached and time.monotonic() - cached[0] < self.ttl:
            return cached[1]
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/vnd.github+json"},
            ) as client:
                resp = await client.get(f"{self.api_url}/repos/{repository}/releases/latest")
                resp.raise_for_status()
                tag = resp.json().get("tag_name")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Release lookup failed", repository=repository, error=str(exc))
            return None
        if not tag:
            return None
        version = tag[1:] if tag[:1] in ("v", "V") else tag
        self._cache[repository] = (time.monotonic(), version)
        return version


@dataclass
class ScannerStatus:
    scanner: str
    installed: bool
    version: str | None
    latest_version: str | None = None
    os_family: str | None = None
    database_updated_at: datetime | None = None
    actions: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.actions)

    def inventory_entry(self) -> dict[str, Any]:
        entry = asdict(self)
        if self.database_updated_at is not None:
            entry["database_updated_at"] = self.database_updated_at.isoformat()
        return entry


class ProvisioningEngine:
    def __init__(
        self,
        pool: "SessionPool",
        registry: ScannerRegistry,
        release_feed: ReleaseFeed,
        *,
        install_timeout: float = 600.0,
        host_store: "HostStore | None" = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.pool = pool
        self.registry = registry
        self.release_feed = release_feed
        self.install_timeout = install_timeout
        self.host_store = host_store
        self._clock = clock
        self._os_cache: dict[str, OsInfo] = {}

    async def detect_os(self, host: str) -> OsInfo:
        cached = self._os_cache.get(host)
        if cached is not None:
            return cached
        values = parse_os_release(await self.pool.execute(host, "cat /etc/os-release", silent=True))
        os_id = values.get("ID", "")
        info = OsInfo(
            family=detect_os_family(os_id, values.get("ID_LIKE", "")),
            id=os_id,
            version=values.get("VERSION_ID", ""),
            pretty_name=values.get("PRETTY_NAME", os_id),
        )
        self._os_cache[host] = info
        if self.host_store is not None:
            await self.host_store.record_os(host, info.family.value, info.pretty_name, info.version)
        logger.info("Detected scan host OS", host=host, family=info.family.value, os=info.pretty_name)
        return info

    async def installed_version(self, host: str, scanner_name: str) -> str | None:
        scanner = self.registry.create(scanner_name)
        output = await self.pool.execute(host, scanner.version_command(), check=False, silent=True)
        return scanner.parse_version(output)

    async def ensure_scanner(self, host: str, scanner_name: str) -> ScannerStatus:
        """Install or upgrade *scanner_name* when needed and refresh a stale database."""
        try:
            scanner = self.registry.create(scanner_name)
        except KeyError as exc:
            raise ProvisioningError(f"Unknown scanner: {scanner_name}") from exc

        os_info = await self.detect_os(host)
        current = await self.installed_version(host, scanner_name)
        latest = await self.release_feed.latest_version(scanner.metadata.repository)
        status = ScannerStatus(
            scanner=scanner_name,
            installed=current is not None,
            version=current,
            latest_version=latest,
            os_family=os_info.family.value,
        )

        if current is None or (latest is not None and is_newer(latest, current)):
            if latest is None:
                raise ProvisioningError(
                    f"{scanner.metadata.display_name} is not installed and no release version is available"
                )
            action = "install" if current is None else "upgrade"
            logger.info(
                "Provisioning scanner",
                host=host,
                scanner=scanner_name,
                action=action,
                current=current,
                target=latest,
            )
            for command in scanner.install_commands(os_info.family, latest):
                await self.pool.execute(host, command, timeout=self.install_timeout)
            current = await self.installed_version(host, scanner_name)
            if current is None:
                raise ProvisioningError(
                    f"{scanner.metadata.display_name} not found on {host} after {action}"
                )
            status.actions.append(action)
            status.installed = True
            status.version = current

        db_output = await self.pool.execute(host, scanner.db_status_command(), check=False, silent=True)
        db = scanner.parse_db_status(db_output, self._clock())
        status.database_updated_at = db.updated_at
        if db.stale:
            logger.info("Refreshing scanner database", host=host, scanner=scanner_name, cache=scanner.cache_dir)
            await self.pool.execute(host, scanner.db_update_command(), timeout=self.install_timeout)
            status.actions.append("db_update")
            status.database_updated_at = self._clock()

        entry = status.inventory_entry()
        session = self.pool.get(host)
        if session is not None:
            session.inventory[scanner_name] = entry
        if self.host_store is not None:
            await self.host_store.record_inventory(host, scanner_name, entry)
        return status
