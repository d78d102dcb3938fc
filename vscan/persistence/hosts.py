"""Persistence of scan hosts and control-plane connection records."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vscan.core.crypto import encrypt
from vscan.core.logging import get_logger
from vscan.models.base import utcnow
from vscan.models.control_plane import ControlPlaneServer
from vscan.models.scan_host import ScanHost

logger = get_logger(__name__)


class HostStore:
    """Writes host status and inventory; each call is its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def _get_or_none(self, session: AsyncSession, address: str) -> ScanHost | None:
        result = await session.execute(select(ScanHost).where(ScanHost.address == address))
        return result.scalar_one_or_none()

    async def get(self, address: str) -> ScanHost | None:
        async with self._factory() as session:
            return await self._get_or_none(session, address)

    async def save_host(self, address: str, username: str, secret: str, port: int = 22) -> ScanHost:
        async with self._factory() as session:
            host = await self._get_or_none(session, address)
            if host is None:
                host = ScanHost(address=address, username=username, port=port)
                session.add(host)
            host.username = username
            host.port = port
            host.secret_enc = encrypt(secret)
            await session.commit()
            await session.refresh(host)
            return host

    async def record_status(self, address: str, status: str, error: str | None) -> None:
        """Status sink for the session pool."""
        async with self._factory() as session:
            host = await self._get_or_none(session, address)
            if host is None:
                return
            host.connection_status = status
            host.error_msg = error
            if status == "connected":
                host.last_connected = utcnow()
            await session.commit()

    async def record_os(self, address: str, family: str, name: str, version: str) -> None:
        async with self._factory() as session:
            host = await self._get_or_none(session, address)
            if host is None:
                return
            host.os_family = family
            host.os_name = name
            host.os_version = version
            await session.commit()

    async def record_inventory(self, address: str, scanner: str, entry: dict[str, Any]) -> None:
        async with self._factory() as session:
            host = await self._get_or_none(session, address)
            if host is None:
                return
            # Reassign so the JSON column is flagged dirty
            inventory = dict(host.scanner_inventory or {})
            inventory[scanner] = entry
            host.scanner_inventory = inventory
            await session.commit()


class ControlPlaneStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def save(
        self,
        server: str,
        port: int,
        username: str,
        password_enc: str,
        remote_version: str | None,
    ) -> None:
        async with self._factory() as session:
            result = await session.execute(
                select(ControlPlaneServer).where(ControlPlaneServer.server == server)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = ControlPlaneServer(server=server, username=username, password_enc=password_enc)
                session.add(row)
            row.port = port
            row.username = username
            row.password_enc = password_enc
            row.remote_version = remote_version
            row.connection_status = "connected"
            row.last_connected = utcnow()
            await session.commit()

    async def mark_disconnected(self) -> None:
        async with self._factory() as session:
            for row in (await session.execute(select(ControlPlaneServer))).scalars():
                row.connection_status = "disconnected"
            await session.commit()

    async def latest(self) -> ControlPlaneServer | None:
        async with self._factory() as session:
            result = await session.execute(
                select(ControlPlaneServer)
                .where(ControlPlaneServer.last_connected.is_not(None))
                .order_by(ControlPlaneServer.last_connected.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()
