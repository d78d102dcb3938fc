"""Tests for the control-plane gateway: allow-list, retries, session expiry."""

import pytest

from fakes import FakeControlPlane, frame
from vscan.core.errors import (
    CommandTimeoutError,
    ControlPlaneError,
    SessionNotConnectedError,
    TransientRemoteError,
    UnauthorizedOperationError,
)
from vscan.gateway import scripts
from vscan.gateway.control_plane import ControlPlaneGateway, check_allowed, find_operations


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _connected(backend: FakeControlPlane, **kwargs) -> ControlPlaneGateway:
    gateway = ControlPlaneGateway(backend.factory, **kwargs)
    await gateway.connect("vbr01", "svc-backup", "s3cret")
    return gateway


def test_find_operations_ignores_string_literals():
    script = "Write-Output 'Remove-Item is only text'\n$x = \"Stop-Computer\"\nGet-VBRBackup"
    assert find_operations(script) == {"Write-Output", "Get-VBRBackup"}


def test_find_operations_sees_subexpressions():
    assert "Remove-Item" in find_operations('Write-Output "$(Remove-Item C:\\x)"')


@pytest.mark.parametrize(
    "script",
    [
        scripts.connect_script("vbr01", 9392, "svc", "p'w"),
        scripts.probe_script(),
        scripts.disconnect_script(),
        scripts.publish_script("rp-1", "scan01", ["Disk1"], "scan"),
        scripts.verify_script("session-1"),
        scripts.unpublish_script("session-1"),
        scripts.list_items_script("web"),
        scripts.list_restore_points_script("web01"),
        scripts.list_disks_script("rp-1"),
    ],
)
def test_builtin_scripts_pass_allow_list(script):
    check_allowed(script)


def test_quote_escapes_single_quotes():
    assert scripts.ps_quote("it's") == "'it''s'"


@pytest.mark.asyncio
async def test_unauthorized_operation_never_reaches_the_server():
    backend = FakeControlPlane()
    gateway = ControlPlaneGateway(backend.factory)
    with pytest.raises(UnauthorizedOperationError) as exc_info:
        await gateway.execute("Remove-VBRBackup -Backup $b")
    assert exc_info.value.details == {"operations": ["Remove-VBRBackup"]}
    assert backend.runners == []


@pytest.mark.asyncio
async def test_not_connected():
    gateway = ControlPlaneGateway(FakeControlPlane().factory)
    with pytest.raises(SessionNotConnectedError):
        await gateway.execute("Get-VBRBackup")


@pytest.mark.asyncio
async def test_connect_failure_keeps_gateway_disconnected():
    backend = FakeControlPlane()
    backend.login_ok = False
    gateway = ControlPlaneGateway(backend.factory)
    with pytest.raises(ControlPlaneError, match="Access denied"):
        await gateway.connect("vbr01", "svc", "wrong")
    assert gateway.is_connected is False
    assert backend.runners[0].closed


@pytest.mark.asyncio
async def test_retry_after_transient_errors():
    backend = FakeControlPlane()
    gateway = await _connected(backend)
    backend.queue = [
        TransientRemoteError("pipe closed"),
        TransientRemoteError("pipe closed"),
        frame(data=[{"name": "web01"}]),
    ]

    result = await gateway.call("Get-VBRBackup")

    assert result.data == [{"name": "web01"}]
    # One runner per attempt, each logged in again with the stored credentials
    assert len(backend.runners) == 3
    assert backend.count("Connect-VBRServer") == 3
    assert all(r.closed for r in backend.runners[:2])


@pytest.mark.asyncio
async def test_retry_bound():
    backend = FakeControlPlane()
    gateway = await _connected(backend)
    backend.queue = [TransientRemoteError("gone")] * 3 + [frame(data="never")]

    with pytest.raises(TransientRemoteError) as exc_info:
        await gateway.execute("Get-VBRBackup")

    assert exc_info.value.details == {"attempts": 3}
    assert len(backend.queue) == 1


@pytest.mark.asyncio
async def test_failure_result_raises_without_retry():
    backend = FakeControlPlane()
    gateway = await _connected(backend)
    backend.queue = [frame(False, error="Restore point not found", details={"errorType": "Exception"})]

    with pytest.raises(ControlPlaneError, match="Restore point not found") as exc_info:
        await gateway.call("Get-VBRRestorePoint -Id 'x'")

    assert exc_info.value.details == {"errorType": "Exception"}
    assert len(backend.runners) == 1


@pytest.mark.asyncio
async def test_expired_session_is_probed_then_renewed():
    backend = FakeControlPlane()
    clock = Clock()
    gateway = await _connected(backend, clock=clock, session_timeout=300)

    clock.now = 100
    await gateway.execute("Get-VBRBackup")
    assert backend.count("Connect-VBRServer") == 1

    # Idle past the timeout with a healthy session: probe only
    clock.now = 500
    await gateway.execute("Get-VBRBackup")
    assert backend.count("Connect-VBRServer") == 1
    assert len(backend.runners) == 1

    # Idle again and the probe fails: log in on a fresh runner
    backend.probe_ok = False
    clock.now = 1000
    await gateway.execute("Get-VBRBackup")
    assert backend.count("Connect-VBRServer") == 2
    assert len(backend.runners) == 2
    assert backend.runners[0].closed


@pytest.mark.asyncio
async def test_timeout_disposes_runner():
    backend = FakeControlPlane()
    gateway = await _connected(backend)
    backend.queue = [CommandTimeoutError("timed out"), frame(data=[])]

    with pytest.raises(CommandTimeoutError):
        await gateway.execute("Get-VBRBackup")
    assert backend.runners[0].closed
    assert len(backend.runners) == 1

    await gateway.execute("Get-VBRBackup")
    assert len(backend.runners) == 2


@pytest.mark.asyncio
async def test_disconnect_forgets_credentials():
    backend = FakeControlPlane()
    gateway = await _connected(backend)
    await gateway.disconnect()

    assert gateway.status()["connected"] is False
    assert backend.count("Disconnect-VBRServer") == 1
    with pytest.raises(SessionNotConnectedError):
        await gateway.execute("Get-VBRBackup")


@pytest.mark.asyncio
async def test_single_item_collapsed_to_list():
    backend = FakeControlPlane()
    gateway = await _connected(backend)
    backend.queue = [frame(data={"id": "rp-1", "name": "web01"})]
    assert await gateway.list_restore_points("web01") == [{"id": "rp-1", "name": "web01"}]
