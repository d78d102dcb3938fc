"""Mount point records, kept so mounts can be found again after a restart."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vscan.models.base import utcnow
from vscan.models.mount_point import MountPoint


class MountStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def record_job_mounts(self, job_id: str, host: str, mount_points: dict[str, str]) -> None:
        async with self._factory() as session:
            now = utcnow()
            for disk, path in mount_points.items():
                session.add(
                    MountPoint(
                        host=host,
                        device=disk,
                        mount_path=path,
                        fs_type="fuse",
                        mount_options="ro",
                        job_id=job_id,
                        status="mounted",
                        mounted_at=now,
                    )
                )
            await session.commit()

    async def mark_job_unmounted(self, job_id: str) -> int:
        async with self._factory() as session:
            result = await session.execute(
                select(MountPoint).where(MountPoint.job_id == job_id, MountPoint.status == "mounted")
            )
            rows = list(result.scalars())
            now = utcnow()
            for row in rows:
                row.status = "unmounted"
                row.unmounted_at = now
            await session.commit()
            return len(rows)

    async def record_job_error(self, job_id: str, error: str) -> int:
        """Attach *error* to the job's still-mounted records; they stay mounted."""
        async with self._factory() as session:
            result = await session.execute(
                select(MountPoint).where(MountPoint.job_id == job_id, MountPoint.status == "mounted")
            )
            rows = list(result.scalars())
            for row in rows:
                row.error_msg = error
            await session.commit()
            return len(rows)

    async def record_mount(
        self,
        host: str,
        device: str,
        mount_path: str,
        *,
        fs_type: str | None,
        options: str | None,
        status: str = "mounted",
        error: str | None = None,
    ) -> MountPoint:
        async with self._factory() as session:
            row = MountPoint(
                host=host,
                device=device,
                mount_path=mount_path,
                fs_type=fs_type,
                mount_options=options,
                status=status,
                error_msg=error,
                mounted_at=utcnow() if status == "mounted" else None,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def mark_path_unmounted(self, host: str, mount_path: str) -> int:
        async with self._factory() as session:
            result = await session.execute(
                select(MountPoint).where(
                    MountPoint.host == host,
                    MountPoint.mount_path == mount_path,
                    MountPoint.status == "mounted",
                )
            )
            rows = list(result.scalars())
            now = utcnow()
            for row in rows:
                row.status = "unmounted"
                row.unmounted_at = now
            await session.commit()
            return len(rows)

    async def active(self, host: str | None = None) -> list[MountPoint]:
        async with self._factory() as session:
            query = select(MountPoint).where(MountPoint.status == "mounted")
            if host:
                query = query.where(MountPoint.host == host)
            result = await session.execute(query.order_by(MountPoint.mounted_at.desc()))
            return list(result.scalars())
