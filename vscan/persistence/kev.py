"""Known-exploited vulnerabilities catalog (CISA KEV feed)."""

from __future__ import annotations

import httpx

from vscan.core.logging import get_logger

logger = get_logger(__name__)


class KevCatalog:
    def __init__(
        self,
        feed_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.feed_url = feed_url
        self.timeout = timeout
        self._transport = transport

    async def fetch(self) -> frozenset[str]:
        """Return the set of known-exploited CVE ids; an empty set when the feed is unavailable."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.feed_url)
                resp.raise_for_status()
                entries = resp.json().get("vulnerabilities", [])
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.warning("KEV feed unavailable, continuing without it", url=self.feed_url, error=str(exc))
            return frozenset()
        ids = frozenset(e["cveID"] for e in entries if isinstance(e, dict) and e.get("cveID"))
        logger.info("KEV catalog loaded", entries=len(ids))
        return ids
