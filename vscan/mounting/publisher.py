"""Publish backup content and wait until its mount points are usable.

``PublishVerifyMachine.run`` drives one job through
Publishing -> Verifying -> Mounted | Failed. ``MountCoordinator.mount``
wraps it in the whole-job retry: every attempt is a fresh job, so a job
never goes back to Publishing.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any

from vscan.core.errors import (
    ControlPlaneError,
    JobCancelledError,
    SessionNotConnectedError,
    UnauthorizedOperationError,
    VerificationTimeoutError,
    VScanError,
)
from vscan.core.logging import get_logger
from vscan.gateway import scripts
from vscan.mounting.jobs import CancelToken, JobRegistry, JobState, PublishJob, PublishRequest

if TYPE_CHECKING:
    from vscan.gateway.control_plane import ControlPlaneGateway
    from vscan.persistence.mounts import MountStore

logger = get_logger(__name__)

DEFAULT_MOUNT_PATTERN = r"^/tmp/Veeam\.Mount\.FS"
DEFAULT_MOUNT_ROOT = r"^/tmp/Veeam\.Mount\.FS\.[^/]+"

_NON_RETRYABLE = (JobCancelledError, UnauthorizedOperationError, SessionNotConnectedError)


def normalize_mount_root(path: str, root_pattern: str = DEFAULT_MOUNT_ROOT) -> str:
    """Reduce a mount point inside a published volume to the volume's root."""
    match = re.match(root_pattern, path)
    return match.group(0) if match else path


async def _wait(seconds: float, cancel: CancelToken | None) -> bool:
    if cancel is not None:
        return await cancel.sleep(seconds)
    if seconds > 0:
        await asyncio.sleep(seconds)
    return False


class PublishVerifyMachine:
    def __init__(
        self,
        gateway: "ControlPlaneGateway",
        *,
        initial_wait: float = 10.0,
        verify_interval: float = 15.0,
        verify_attempts: int = 5,
        mount_path_pattern: str = DEFAULT_MOUNT_PATTERN,
        mount_root_pattern: str = DEFAULT_MOUNT_ROOT,
        mount_store: "MountStore | None" = None,
    ) -> None:
        self.gateway = gateway
        self.initial_wait = initial_wait
        self.verify_interval = verify_interval
        self.verify_attempts = verify_attempts
        self._mount_re = re.compile(mount_path_pattern)
        self.mount_root_pattern = mount_root_pattern
        self.mount_store = mount_store

    async def run(self, job: PublishJob, cancel: CancelToken | None = None) -> PublishJob:
        request = job.request
        log = logger.bind(job_id=job.id, item=request.item_name, attempt=job.attempt)

        self._raise_if_cancelled(job, cancel)
        try:
            result = await self.gateway.call(
                scripts.publish_script(
                    request.restore_point_id, request.target_host, request.disk_names, request.reason
                )
            )
        except VScanError as exc:
            job.mark_failed(f"Publish failed: {exc}")
            log.warning("Publish failed", error=str(exc))
            raise

        session_id = (result.data or {}).get("sessionId") if isinstance(result.data, dict) else None
        if not session_id:
            job.mark_failed("Publish returned no session id")
            raise ControlPlaneError("Publish returned no session id", details=result.raw)
        job.session_id = session_id
        job.transition(JobState.VERIFYING)
        log.info("Backup content published", session_id=session_id)

        if await _wait(self.initial_wait, cancel):
            self._fail_cancelled(job)

        last_error = "no verification attempted"
        for attempt in range(1, self.verify_attempts + 1):
            self._raise_if_cancelled(job, cancel)
            job.verify_calls += 1
            try:
                result = await self.gateway.call(scripts.verify_script(session_id))
                mounts = self.accepted_mounts(result.data, log)
                missing = self._missing_disks(request.disk_names, mounts)
                if not missing:
                    job.mark_mounted(mounts)
                    log.info("Mount verified", mount_points=dict(job.mount_points), verify_calls=job.verify_calls)
                    await self._record(job)
                    return job
                last_error = f"No usable mount point for: {', '.join(missing)}"
            except VScanError as exc:
                last_error = str(exc)
            log.info("Mount not ready", verify_attempt=attempt, max_attempts=self.verify_attempts, reason=last_error)
            if attempt < self.verify_attempts and await _wait(self.verify_interval, cancel):
                self._fail_cancelled(job)

        job.mark_failed(f"Verification timed out: {last_error}")
        raise VerificationTimeoutError(
            f"Mount not ready after {self.verify_attempts} verification attempts",
            details={"job_id": job.id, "last_error": last_error},
        )

    def accepted_mounts(self, data: Any, log=logger) -> dict[str, str]:
        """Disk name -> mount root for every disk with an acceptable mount point."""
        disks = data.get("disks") if isinstance(data, dict) else None
        if isinstance(disks, dict):
            disks = [disks]
        if not isinstance(disks, list):
            return {}
        mounts: dict[str, str] = {}
        for disk in disks:
            if not isinstance(disk, dict) or not disk.get("diskName"):
                log.info("Ignoring malformed disk entry", entry=repr(disk)[:200])
                continue
            name = str(disk["diskName"])
            points = disk.get("mountPoints") or []
            if isinstance(points, str):
                points = [points]
            if not isinstance(points, list):
                points = []
            for point in points:
                if not isinstance(point, str) or not self._mount_re.match(point):
                    log.info("Ignoring mount point outside the publish area", disk=name, path=str(point)[:200])
                    continue
                mounts.setdefault(name, normalize_mount_root(point, self.mount_root_pattern))
        return mounts

    @staticmethod
    def _missing_disks(expected: list[str], mounts: dict[str, str]) -> list[str]:
        if not expected:
            return [] if mounts else ["any disk"]
        available = {str(name).lower() for name in mounts}
        return [disk for disk in expected if disk.lower() not in available]

    async def _record(self, job: PublishJob) -> None:
        if self.mount_store is None:
            return
        try:
            await self.mount_store.record_job_mounts(job.id, job.request.target_host, dict(job.mount_points))
        except Exception:
            logger.exception("Failed to record mount points", job_id=job.id)

    @staticmethod
    def _raise_if_cancelled(job: PublishJob, cancel: CancelToken | None) -> None:
        if cancel is not None and cancel.cancelled:
            PublishVerifyMachine._fail_cancelled(job)

    @staticmethod
    def _fail_cancelled(job: PublishJob) -> None:
        job.mark_failed("Cancelled")
        raise JobCancelledError("Publish job cancelled", details={"job_id": job.id})


class MountCoordinator:
    """Whole-job retry around :class:`PublishVerifyMachine`."""

    def __init__(
        self,
        machine: PublishVerifyMachine,
        jobs: JobRegistry,
        *,
        max_retries: int = 3,
        retry_delay: float = 5.0,
    ) -> None:
        self.machine = machine
        self.jobs = jobs
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def mount(self, request: PublishRequest, cancel: CancelToken | None = None) -> PublishJob:
        last_error: VScanError | None = None
        previous: PublishJob | None = None

        for attempt in range(1, self.max_retries + 1):
            job = PublishJob(request=request, attempt=attempt)
            self.jobs.add(job)
            if previous is not None:
                self.jobs.remove(previous.id)
            previous = job
            try:
                return await self.machine.run(job, cancel)
            except _NON_RETRYABLE:
                await self.release(job)
                raise
            except VScanError as exc:
                last_error = exc
                logger.warning(
                    "Mount attempt failed",
                    item=request.item_name,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(exc),
                )
                await self.release(job)
            if attempt < self.max_retries and await _wait(self.retry_delay, cancel):
                raise JobCancelledError("Publish request cancelled", details={"request_id": request.id})

        if last_error is None:
            raise VScanError("mount_failed", f"No mount attempt completed for {request.item_name}")
        raise last_error

    async def release(self, job: PublishJob) -> None:
        """Best-effort unpublish of a session left behind by a failed attempt."""
        if not job.session_id or job.state is JobState.MOUNTED:
            return
        try:
            await self.machine.gateway.call(scripts.unpublish_script(job.session_id))
        except VScanError as exc:
            logger.warning("Could not release publish session", session_id=job.session_id, error=str(exc))
