"""Service container — every long-lived component, built once per process.

The FastAPI lifespan builds a :class:`Services` from the settings, starts it,
and closes it on shutdown. Nothing here is a module-level singleton.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vscan.core.config import Settings
from vscan.core.errors import VScanError
from vscan.core.logging import get_logger
from vscan.core.registry import ScannerRegistry
from vscan.gateway.control_plane import ControlPlaneCredentials, ControlPlaneGateway
from vscan.gateway.powershell import PowerShellProcess, PowerShellRunner
from vscan.mounting.host_mounts import HostMounts
from vscan.mounting.jobs import CancelToken, JobRegistry
from vscan.mounting.publisher import MountCoordinator, PublishVerifyMachine
from vscan.mounting.unmount import UnmountController
from vscan.persistence.hosts import ControlPlaneStore, HostStore
from vscan.persistence.kev import KevCatalog
from vscan.persistence.mounts import MountStore
from vscan.persistence.vulnerabilities import VulnerabilityStore
from vscan.provisioning import ProvisioningEngine, ReleaseFeed
from vscan.remote.pool import SessionPool
from vscan.scanning.batch import BatchResult, ScanBatchRunner
from vscan.scanning.executor import ScanExecutor

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    pool: SessionPool
    gateway: ControlPlaneGateway
    jobs: JobRegistry
    machine: PublishVerifyMachine
    coordinator: MountCoordinator
    unmount: UnmountController
    host_mounts: HostMounts
    registry: ScannerRegistry
    provisioning: ProvisioningEngine
    executor: ScanExecutor
    hosts: HostStore
    control_planes: ControlPlaneStore
    mounts: MountStore
    vulnerabilities: VulnerabilityStore
    kev: KevCatalog
    batches: ScanBatchRunner
    # Batches started through the API, by batch id
    batch_results: dict[str, BatchResult | None] = field(default_factory=dict)
    batch_tokens: dict[str, CancelToken] = field(default_factory=dict)

    async def start(self) -> None:
        self.pool.start()
        await self._restore_control_plane()

    async def close(self) -> None:
        for token in self.batch_tokens.values():
            token.cancel()
        await self.pool.close()
        await self.gateway.close()
        logger.info("Services stopped")

    def finish_batch(self, batch_id: str, result: BatchResult | None) -> None:
        """Store a finished batch, dropping the oldest finished ones beyond the history limit."""
        self.batch_tokens.pop(batch_id, None)
        self.batch_results.pop(batch_id, None)
        self.batch_results[batch_id] = result
        finished = [b for b in self.batch_results if b not in self.batch_tokens]
        for old in finished[: max(0, len(finished) - self.settings.batch_history_limit)]:
            del self.batch_results[old]

    async def _restore_control_plane(self) -> None:
        row = await self.control_planes.latest()
        if row is None or row.connection_status != "connected":
            return
        credentials = ControlPlaneCredentials(
            server=row.server, port=row.port, username=row.username, password_enc=row.password_enc
        )
        try:
            await self.gateway.restore(credentials)
            logger.info("Control-plane session restored", server=row.server)
        except VScanError as exc:
            logger.warning("Could not restore control-plane session", server=row.server, error=str(exc))
            await self.control_planes.mark_disconnected()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    connector: Callable[..., Awaitable[Any]] | None = None,
    runner_factory: Callable[[], PowerShellRunner] | None = None,
) -> Services:
    """Wire every component from *settings*; *connector* and *runner_factory* replace SSH and PowerShell."""
    hosts = HostStore(session_factory)
    control_planes = ControlPlaneStore(session_factory)
    mounts = MountStore(session_factory)
    vulnerabilities = VulnerabilityStore(session_factory)

    pool = SessionPool(
        connector=connector,
        status_sink=hosts.record_status,
        connect_timeout=settings.ssh_connect_timeout,
        command_timeout=settings.ssh_command_timeout,
        probe_timeout=settings.ssh_probe_timeout,
        keepalive_interval=settings.ssh_keepalive_interval,
        sweep_interval=settings.ssh_sweep_interval,
        idle_timeout=settings.ssh_idle_timeout,
        max_reconnect_attempts=settings.ssh_max_reconnect_attempts,
        max_password_attempts=settings.ssh_max_password_attempts,
    )
    gateway = ControlPlaneGateway(
        runner_factory or (lambda: PowerShellProcess(settings.powershell_executable)),
        max_attempts=settings.gateway_max_attempts,
        session_timeout=settings.gateway_session_timeout,
        request_timeout=settings.gateway_request_timeout,
    )

    jobs = JobRegistry()
    machine = PublishVerifyMachine(
        gateway,
        initial_wait=settings.publish_initial_wait,
        verify_interval=settings.verify_interval,
        verify_attempts=settings.verify_max_attempts,
        mount_path_pattern=settings.mount_path_pattern,
        mount_root_pattern=settings.mount_root_pattern,
        mount_store=mounts,
    )
    coordinator = MountCoordinator(
        machine,
        jobs,
        max_retries=settings.publish_max_retries,
        retry_delay=settings.publish_retry_delay,
    )
    unmount = UnmountController(gateway, jobs, mount_store=mounts)

    registry = ScannerRegistry(
        cache_root=settings.scanner_cache_root,
        db_max_age=timedelta(hours=settings.scanner_db_max_age_hours),
    )
    registry.discover()
    provisioning = ProvisioningEngine(
        pool,
        registry,
        ReleaseFeed(settings.github_api_url),
        install_timeout=settings.install_timeout,
        host_store=hosts,
    )
    executor = ScanExecutor(pool, registry, scan_timeout=settings.scan_timeout)
    kev = KevCatalog(settings.kev_feed_url, timeout=settings.kev_feed_timeout)

    return Services(
        settings=settings,
        pool=pool,
        gateway=gateway,
        jobs=jobs,
        machine=machine,
        coordinator=coordinator,
        unmount=unmount,
        host_mounts=HostMounts(pool, mount_store=mounts),
        registry=registry,
        provisioning=provisioning,
        executor=executor,
        hosts=hosts,
        control_planes=control_planes,
        mounts=mounts,
        vulnerabilities=vulnerabilities,
        kev=kev,
        batches=ScanBatchRunner(coordinator, unmount, provisioning, executor, vulnerabilities, kev),
    )
