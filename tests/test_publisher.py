"""Tests for the publish/verify state machine and the whole-job retry."""

import pytest

from fakes import FakeGateway
from vscan.core.errors import (
    ControlPlaneError,
    JobCancelledError,
    SessionNotConnectedError,
    VerificationTimeoutError,
)
from vscan.mounting.jobs import CancelToken, InvalidTransition, JobRegistry, JobState, PublishJob, PublishRequest
from vscan.mounting.publisher import MountCoordinator, PublishVerifyMachine, normalize_mount_root


def _request(disks=("Disk1",)) -> PublishRequest:
    return PublishRequest(
        item_name="web01", restore_point_id="rp-1", disk_names=list(disks), target_host="scan01"
    )


def _machine(gateway, **kwargs) -> PublishVerifyMachine:
    kwargs.setdefault("initial_wait", 0)
    kwargs.setdefault("verify_interval", 0)
    return PublishVerifyMachine(gateway, **kwargs)


def _not_ready(session="session-1"):
    return {"sessionId": session, "disks": []}


@pytest.mark.asyncio
async def test_mounted_on_third_verification():
    gateway = FakeGateway(verify_results=[_not_ready(), ControlPlaneError("Session not ready")])
    job = PublishJob(request=_request())

    await _machine(gateway).run(job)

    assert job.state is JobState.MOUNTED
    assert job.state_history == [JobState.PUBLISHING, JobState.VERIFYING, JobState.MOUNTED]
    assert job.verify_calls == 3
    assert job.session_id == "session-1"
    assert dict(job.mount_points) == {"Disk1": "/tmp/Veeam.Mount.FS.session-1"}


@pytest.mark.asyncio
async def test_mount_points_read_only_after_mount():
    job = PublishJob(request=_request())
    await _machine(FakeGateway()).run(job)
    with pytest.raises(TypeError):
        job.mount_points["Disk2"] = "/tmp/other"


@pytest.mark.asyncio
async def test_verification_timeout():
    gateway = FakeGateway(verify_results=[_not_ready()] * 5)
    job = PublishJob(request=_request())

    with pytest.raises(VerificationTimeoutError):
        await _machine(gateway, verify_attempts=5).run(job)

    assert job.state is JobState.FAILED
    assert job.verify_calls == 5
    assert gateway.count("verify") == 5
    assert "Disk1" in job.last_error


@pytest.mark.asyncio
async def test_publish_failure_fails_job():
    gateway = FakeGateway(publish_results=[ControlPlaneError("Restore point not found")])
    job = PublishJob(request=_request())

    with pytest.raises(ControlPlaneError):
        await _machine(gateway).run(job)

    assert job.state_history == [JobState.PUBLISHING, JobState.FAILED]
    assert gateway.count("verify") == 0


@pytest.mark.asyncio
async def test_mount_points_outside_publish_area_are_ignored():
    verify = {
        "sessionId": "session-1",
        "disks": [
            {"diskName": "Disk1", "mountPoints": ["/mnt/elsewhere", "/tmp/Veeam.Mount.FS.abc/Volume2/etc"]},
            {"diskName": "Disk2", "mountPoints": "/media/usb"},
        ],
    }
    job = PublishJob(request=_request(disks=()))
    await _machine(FakeGateway(verify_results=[verify])).run(job)
    assert dict(job.mount_points) == {"Disk1": "/tmp/Veeam.Mount.FS.abc"}


@pytest.mark.asyncio
async def test_disk_names_match_case_insensitively():
    verify = {"disks": [{"diskName": "disk1", "mountPoints": ["/tmp/Veeam.Mount.FS.x/Volume1"]}]}
    job = PublishJob(request=_request(disks=("Disk1",)))
    await _machine(FakeGateway(verify_results=[verify])).run(job)
    assert job.state is JobState.MOUNTED


def test_normalize_mount_root():
    assert normalize_mount_root("/tmp/Veeam.Mount.FS.1234/Volume1/var") == "/tmp/Veeam.Mount.FS.1234"
    assert normalize_mount_root("/srv/data") == "/srv/data"


def test_invalid_transitions():
    job = PublishJob(request=_request())
    with pytest.raises(InvalidTransition):
        job.transition(JobState.MOUNTED)
    job.transition(JobState.VERIFYING)
    job.mark_failed("boom")
    assert job.is_terminal
    with pytest.raises(InvalidTransition):
        job.transition(JobState.PUBLISHING)


@pytest.mark.asyncio
async def test_whole_job_retry_bound():
    gateway = FakeGateway(verify_results=[_not_ready()] * 10)
    jobs = JobRegistry()
    coordinator = MountCoordinator(_machine(gateway, verify_attempts=1), jobs, max_retries=3, retry_delay=0)
    request = _request()

    with pytest.raises(VerificationTimeoutError):
        await coordinator.mount(request)

    assert gateway.count("publish") == 3
    # Every failed attempt releases its session
    assert gateway.count("unpublish") == 3
    latest = jobs.latest(request.id)
    assert latest.attempt == 3
    assert latest.state is JobState.FAILED
    assert len(jobs.all()) == 1


@pytest.mark.asyncio
async def test_retry_then_success():
    gateway = FakeGateway(publish_results=[ControlPlaneError("busy")])
    jobs = JobRegistry()
    coordinator = MountCoordinator(_machine(gateway), jobs, max_retries=3, retry_delay=0)

    job = await coordinator.mount(_request())

    assert job.attempt == 2
    assert job.state is JobState.MOUNTED
    assert jobs.mounted() == [job]


@pytest.mark.asyncio
async def test_not_connected_is_not_retried():
    gateway = FakeGateway(publish_results=[SessionNotConnectedError("Control plane is not connected")])
    coordinator = MountCoordinator(_machine(gateway), JobRegistry(), max_retries=3, retry_delay=0)

    with pytest.raises(SessionNotConnectedError):
        await coordinator.mount(_request())
    assert gateway.count("publish") == 1


@pytest.mark.asyncio
async def test_cancelled_before_publish():
    gateway = FakeGateway()
    token = CancelToken()
    token.cancel()
    jobs = JobRegistry()
    coordinator = MountCoordinator(_machine(gateway), jobs, retry_delay=0)
    request = _request()

    with pytest.raises(JobCancelledError):
        await coordinator.mount(request, token)

    assert gateway.calls == []
    assert jobs.latest(request.id).state is JobState.FAILED


@pytest.mark.asyncio
async def test_cancelled_while_verifying_releases_session():
    token = CancelToken()

    class CancellingGateway(FakeGateway):
        async def call(self, script):
            result = await super().call(script)
            if self.calls[-1] == "publish":
                token.cancel()
            return result

    gateway = CancellingGateway()
    coordinator = MountCoordinator(_machine(gateway), JobRegistry(), retry_delay=0)

    with pytest.raises(JobCancelledError):
        await coordinator.mount(_request(), token)

    assert gateway.calls == ["publish", "unpublish"]


@pytest.mark.asyncio
async def test_cancel_token_sleep():
    token = CancelToken()
    assert await token.sleep(0) is False
    token.cancel()
    assert await token.sleep(10) is True


def test_malformed_disk_entries_are_skipped():
    machine = _machine(FakeGateway())
    data = {
        "disks": [
            None,
            "Disk1",
            {"mountPoints": ["/tmp/Veeam.Mount.FS.a/Volume1"]},
            {"diskName": "Disk2", "mountPoints": [None, 7, "/tmp/Veeam.Mount.FS.b/Volume1"]},
            {"diskName": "Disk3", "mountPoints": {"path": "/tmp/Veeam.Mount.FS.c"}},
        ]
    }
    assert machine.accepted_mounts(data) == {"Disk2": "/tmp/Veeam.Mount.FS.b"}
    assert machine.accepted_mounts({"disks": "Disk1"}) == {}
    assert machine.accepted_mounts(["Disk1"]) == {}


def test_coordinator_needs_at_least_one_attempt():
    with pytest.raises(ValueError):
        MountCoordinator(_machine(FakeGateway()), JobRegistry(), max_retries=0)
