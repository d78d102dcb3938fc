"""Tests for the Scans API — validate, run a batch end to end, read results."""

import pytest

from fakes import FakeKev, FakeProcess, frame, trivy_report, trivy_vuln

VERIFIED = {
    "sessionId": "s-1",
    "disks": [{"diskName": "Disk1", "mountPoints": ["/tmp/Veeam.Mount.FS.s-1/Volume1"]}],
}


class NoopProvisioning:
    async def ensure_scanner(self, host, name):
        return None


async def _connect_everything(client):
    r = await client.post(
        "/api/v1/control-plane/connect",
        json={"server": "vbr01", "username": "svc-backup", "password": "s3cret"},
    )
    assert r.status_code == 200
    r = await client.post(
        "/api/v1/hosts/connect", json={"address": "scan01", "username": "scan", "secret": "pw"}
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_create_batch_unknown_scanner(client):
    r = await client.post(
        "/api/v1/scans",
        json={"host": "scan01", "items": [{"item_name": "web01", "restore_point_id": "rp-1"}], "scanners": ["clair"]},
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_create_batch_requires_items(client):
    r = await client.post("/api/v1/scans", json={"host": "scan01", "items": []})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_create_batch_host_not_connected(client):
    r = await client.post(
        "/api/v1/scans", json={"host": "scan01", "items": [{"item_name": "web01", "restore_point_id": "rp-1"}]}
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_batch_end_to_end(client, services, control_plane, ssh_host):
    services.batches.kev = FakeKev({"CVE-2024-0001"})
    services.batches.provisioning = NoopProvisioning()
    await _connect_everything(client)
    ssh_host.on("sudo cat", lambda: FakeProcess([trivy_report(trivy_vuln("CVE-2024-0001"))]))
    control_plane.queue = [frame(data={"sessionId": "s-1"}), frame(data=VERIFIED), frame(data={"sessionId": "s-1"})]

    r = await client.post(
        "/api/v1/scans",
        json={"host": "scan01", "items": [{"item_name": "web01", "restore_point_id": "rp-1"}]},
    )
    assert r.status_code == 202
    batch_id = r.json()["batch_id"]

    r = await client.get(f"/api/v1/scans/batches/{batch_id}")
    assert r.status_code == 200
    batch = r.json()
    assert batch["state"] == "finished"
    item = batch["result"]["items"][0]
    assert item["status"] == "completed"
    assert item["mount_points"] == {"Disk1": "/tmp/Veeam.Mount.FS.s-1"}
    assert item["unmounted"] is True
    assert any("trivy fs" in c and "/tmp/Veeam.Mount.FS.s-1" in c for c in ssh_host.commands)

    r = await client.get("/api/v1/scans", params={"batch_id": batch_id})
    scans = r.json()
    assert scans["total"] == 1
    scan = scans["items"][0]
    assert scan["status"] == "completed"
    assert scan["high_count"] == 1

    r = await client.get(f"/api/v1/scans/{scan['id']}")
    assert r.status_code == 200

    r = await client.get("/api/v1/vulnerabilities", params={"in_kev": "true"})
    vulns = r.json()
    assert vulns["total"] == 1
    assert vulns["items"][0]["finding_id"] == "CVE-2024-0001"
    assert vulns["items"][0]["item_name"] == "web01"

    r = await client.post(f"/api/v1/scans/batches/{batch_id}/cancel")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_batch_item_fails_when_control_plane_is_down(client, services, ssh_host):
    services.batches.kev = FakeKev()
    await client.post("/api/v1/hosts/connect", json={"address": "scan01", "username": "scan", "secret": "pw"})

    r = await client.post(
        "/api/v1/scans", json={"host": "scan01", "items": [{"item_name": "web01", "restore_point_id": "rp-1"}]}
    )
    batch_id = r.json()["batch_id"]

    batch = (await client.get(f"/api/v1/scans/batches/{batch_id}")).json()
    assert batch["state"] == "finished"
    assert batch["result"]["failed"] == 1
    assert batch["result"]["items"][0]["error"]["kind"] == "not_connected"


@pytest.mark.asyncio
async def test_batch_not_found(client):
    r = await client.get("/api/v1/scans/batches/nope")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_scan_not_found(client):
    r = await client.get("/api/v1/scans/00000000-0000-0000-0000-000000000000")
    assert r.status_code == 404
