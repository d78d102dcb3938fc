"""In-memory publish jobs and their state machine."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from vscan.core.errors import JobNotFoundError
from vscan.models.base import utcnow


class JobState(str, Enum):
    PUBLISHING = "publishing"
    VERIFYING = "verifying"
    MOUNTED = "mounted"
    FAILED = "failed"


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PUBLISHING: frozenset({JobState.VERIFYING, JobState.FAILED}),
    JobState.VERIFYING: frozenset({JobState.MOUNTED, JobState.FAILED}),
    JobState.MOUNTED: frozenset(),
    JobState.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PublishRequest:
    item_name: str
    restore_point_id: str
    disk_names: list[str]
    target_host: str
    reason: str = "Vulnerability scan"
    # Shared by every attempt made for this request
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class PublishJob:
    request: PublishRequest
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempt: int = 1
    state: JobState = JobState.PUBLISHING
    session_id: str | None = None
    last_error: str | None = None
    verify_calls: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    state_history: list[JobState] = field(default_factory=lambda: [JobState.PUBLISHING])
    _mount_points: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), init=False, repr=False
    )

    @property
    def mount_points(self) -> Mapping[str, str]:
        """Disk name -> mount root. Empty until mounted, read-only afterwards."""
        return self._mount_points

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, target: JobState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        self.state = target
        self.updated_at = utcnow()
        self.state_history.append(target)

    def mark_mounted(self, mount_points: dict[str, str]) -> None:
        self.transition(JobState.MOUNTED)
        self._mount_points = MappingProxyType(dict(mount_points))

    def mark_failed(self, error: str) -> None:
        self.last_error = error
        self.transition(JobState.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request.id,
            "item_name": self.request.item_name,
            "restore_point_id": self.request.restore_point_id,
            "disk_names": list(self.request.disk_names),
            "target_host": self.request.target_host,
            "attempt": self.attempt,
            "state": self.state.value,
            "session_id": self.session_id,
            "mount_points": dict(self.mount_points),
            "verify_calls": self.verify_calls,
            "last_error": self.last_error,
            "state_history": [s.value for s in self.state_history],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class CancelToken:
    """Cooperative cancellation shared between a caller and a running job."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` if cancelled meanwhile."""
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class JobRegistry:
    """Jobs by id; owned by the service container, not a module global."""

    def __init__(self) -> None:
        self._jobs: dict[str, PublishJob] = {}

    def add(self, job: PublishJob) -> None:
        self._jobs[job.id] = job

    def get(self, job_id: str) -> PublishJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Publish job not found: {job_id}")
        return job

    def find(self, job_id: str) -> PublishJob | None:
        return self._jobs.get(job_id)

    def remove(self, job_id: str) -> PublishJob | None:
        return self._jobs.pop(job_id, None)

    def all(self) -> list[PublishJob]:
        return list(self._jobs.values())

    def latest(self, request_id: str) -> PublishJob:
        jobs = [j for j in self._jobs.values() if j.request.id == request_id]
        if not jobs:
            raise JobNotFoundError(f"No publish job for request {request_id}")
        return max(jobs, key=lambda j: j.attempt)

    def mounted(self) -> list[PublishJob]:
        return [j for j in self._jobs.values() if j.state is JobState.MOUNTED]
