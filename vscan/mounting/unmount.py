"""Tearing down publish sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from vscan.core.errors import ControlPlaneError, VScanError
from vscan.core.logging import get_logger
from vscan.gateway import scripts
from vscan.mounting.jobs import JobRegistry, PublishJob

if TYPE_CHECKING:
    from vscan.gateway.control_plane import ControlPlaneGateway
    from vscan.persistence.mounts import MountStore

logger = get_logger(__name__)


def is_session_gone(exc: ControlPlaneError) -> bool:
    details = exc.details if isinstance(exc.details, dict) else {}
    if details.get("code") == scripts.SESSION_NOT_FOUND:
        return True
    return "session not found" in exc.message.lower()


class UnmountController:
    """Unpublishes a job's session, then forgets the job.

    The job leaves the registry only after the control plane acknowledged the
    unpublish (a session the control plane no longer knows counts as
    acknowledged), so a failed unmount can be retried.
    """

    def __init__(
        self,
        gateway: "ControlPlaneGateway",
        jobs: JobRegistry,
        mount_store: "MountStore | None" = None,
    ) -> None:
        self.gateway = gateway
        self.jobs = jobs
        self.mount_store = mount_store

    async def unmount(self, job_id: str) -> PublishJob:
        job = self.jobs.get(job_id)
        log = logger.bind(job_id=job.id, item=job.request.item_name)

        if job.session_id:
            try:
                await self.gateway.call(scripts.unpublish_script(job.session_id))
                log.info("Publish session removed", session_id=job.session_id)
            except ControlPlaneError as exc:
                if not is_session_gone(exc):
                    if self.mount_store is not None:
                        await self.mount_store.record_job_error(job.id, f"Unmount failed: {exc}")
                    raise
                log.info("Publish session already gone", session_id=job.session_id)

        self.jobs.remove(job.id)
        if self.mount_store is not None:
            await self.mount_store.mark_job_unmounted(job.id)
        return job

    async def unmount_all(self) -> dict[str, str | None]:
        """Unmount every known job; returns job id -> error (``None`` on success)."""
        outcomes: dict[str, str | None] = {}
        for job in self.jobs.all():
            try:
                await self.unmount(job.id)
                outcomes[job.id] = None
            except VScanError as exc:
                logger.warning("Unmount failed", job_id=job.id, error=str(exc))
                outcomes[job.id] = str(exc)
        return outcomes
