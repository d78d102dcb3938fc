"""Tests for the KEV catalog."""

import httpx
import pytest

from vscan.persistence.kev import KevCatalog

FEED = "https://kev.test/known_exploited_vulnerabilities.json"


def _catalog(handler) -> KevCatalog:
    return KevCatalog(FEED, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_ids():
    catalog = _catalog(
        lambda request: httpx.Response(
            200,
            json={"vulnerabilities": [{"cveID": "CVE-2021-44228"}, {"cveID": "CVE-2023-4863"}, {"vendor": "x"}]},
        )
    )
    assert await catalog.fetch() == frozenset({"CVE-2021-44228", "CVE-2023-4863"})


@pytest.mark.asyncio
async def test_feed_down_returns_empty_set():
    catalog = _catalog(lambda request: httpx.Response(503))
    assert await catalog.fetch() == frozenset()


@pytest.mark.asyncio
async def test_garbage_feed_returns_empty_set():
    catalog = _catalog(lambda request: httpx.Response(200, content=b"<html>maintenance</html>"))
    assert await catalog.fetch() == frozenset()


@pytest.mark.asyncio
async def test_unreachable_feed_returns_empty_set():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert await _catalog(refuse).fetch() == frozenset()
