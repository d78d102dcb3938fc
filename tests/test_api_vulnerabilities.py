"""Tests for the Vulnerabilities API — listing, history, review status."""

import pytest

from vscan.scanners.reports import Finding


async def _seed(services):
    store = services.vulnerabilities
    scan_id = await store.start_scan("scan01", "web01", "trivy")
    await store.record_scan(
        scan_id,
        [
            Finding("CVE-2024-0001", "openssl", "3.0.2", "CRITICAL", references=("https://a", "https://b")),
            Finding("CVE-2024-0002", "zlib", "1.2.11", "LOW"),
        ],
    )
    return scan_id


@pytest.mark.asyncio
async def test_list_and_filter(client, services):
    await _seed(services)

    r = await client.get("/api/v1/vulnerabilities")
    assert r.status_code == 200
    assert r.json()["total"] == 2

    r = await client.get("/api/v1/vulnerabilities", params={"severity": "critical"})
    data = r.json()
    assert data["total"] == 1
    assert data["items"][0]["reference_links"] == "https://a, https://b"

    r = await client.get("/api/v1/vulnerabilities", params={"status": "pending", "limit": 1})
    data = r.json()
    assert data["total"] == 2
    assert len(data["items"]) == 1


@pytest.mark.asyncio
async def test_history_and_status(client, services):
    scan_id = await _seed(services)
    r = await client.get("/api/v1/vulnerabilities", params={"search": "zlib"})
    vuln_id = r.json()["items"][0]["id"]

    r = await client.get(f"/api/v1/vulnerabilities/{vuln_id}/history")
    assert r.status_code == 200
    history = r.json()
    assert len(history) == 1
    assert history[0]["scan_id"] == str(scan_id)

    r = await client.patch(f"/api/v1/vulnerabilities/{vuln_id}", json={"status": "confirmed"})
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"

    r = await client.get(f"/api/v1/vulnerabilities/{vuln_id}")
    assert r.json()["status"] == "confirmed"


@pytest.mark.asyncio
async def test_invalid_status(client, services):
    await _seed(services)
    vuln_id = (await client.get("/api/v1/vulnerabilities")).json()["items"][0]["id"]
    r = await client.patch(f"/api/v1/vulnerabilities/{vuln_id}", json={"status": "ignored"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_vulnerability_not_found(client):
    missing = "00000000-0000-0000-0000-000000000000"
    assert (await client.get(f"/api/v1/vulnerabilities/{missing}")).status_code == 404
    r = await client.patch(f"/api/v1/vulnerabilities/{missing}", json={"status": "fixed"})
    assert r.status_code == 404
