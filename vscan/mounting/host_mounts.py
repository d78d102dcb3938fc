"""Mounting local block devices on a scan host (read-only by default)."""

from __future__ import annotations

import posixpath
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vscan.core.errors import RemoteCommandError, VScanError
from vscan.core.logging import get_logger

if TYPE_CHECKING:
    from vscan.persistence.mounts import MountStore
    from vscan.remote.pool import SessionPool

logger = get_logger(__name__)


@dataclass
class ActiveMount:
    device: str
    fs_type: str
    size: str
    used: str
    available: str
    use_percent: str
    mount_path: str


def parse_df(output: str) -> list[ActiveMount]:
    """Parse ``df -hT`` output (header line first)."""
    mounts: list[ActiveMount] = []
    for line in (output or "").splitlines()[1:]:
        parts = line.split(None, 6)
        if len(parts) < 7:
            continue
        mounts.append(ActiveMount(*parts))
    return mounts


def _checked_path(path: str) -> str:
    normalized = posixpath.normpath(path)
    if not normalized.startswith("/") or normalized == "/" or ".." in path.split("/"):
        raise VScanError("invalid_path", f"Refusing to use mount point {path!r}")
    return normalized


class HostMounts:
    def __init__(self, pool: "SessionPool", mount_store: "MountStore | None" = None) -> None:
        self.pool = pool
        self.mount_store = mount_store

    async def mount(
        self,
        host: str,
        device: str,
        mount_point: str,
        *,
        options: str = "ro",
        fs_type: str | None = None,
    ) -> ActiveMount:
        path = _checked_path(mount_point)
        q_path = shlex.quote(path)
        type_arg = f"-t {shlex.quote(fs_type)} " if fs_type else ""
        try:
            await self.pool.execute(host, f"sudo mkdir -p {q_path}")
            await self.pool.execute(
                host, f"sudo mount -o {shlex.quote(options)} {type_arg}{shlex.quote(device)} {q_path}"
            )
            mounted = [m for m in parse_df(await self.pool.execute(host, f"df -hT {q_path}")) if m.mount_path == path]
            if not mounted:
                raise RemoteCommandError(f"{device} is not mounted on {path} after mount")
        except VScanError as exc:
            if self.mount_store is not None:
                await self.mount_store.record_mount(
                    host, device, path, fs_type=fs_type, options=options, status="failed", error=str(exc)
                )
            raise

        active = mounted[0]
        if self.mount_store is not None:
            await self.mount_store.record_mount(host, device, path, fs_type=active.fs_type, options=options)
        logger.info("Device mounted", host=host, device=device, path=path, fs_type=active.fs_type)
        return active

    async def unmount(self, host: str, mount_point: str, *, force: bool = False) -> bool:
        """Unmount *mount_point*; returns ``False`` when it was not mounted."""
        path = _checked_path(mount_point)
        q_path = shlex.quote(path)
        state = await self.pool.execute(
            host, f"mountpoint -q {q_path} && echo mounted || echo not-mounted", check=False
        )
        was_mounted = state.strip().endswith("mounted") and not state.strip().endswith("not-mounted")
        if was_mounted:
            if force:
                # Kill processes holding the mount open
                await self.pool.execute(host, f"sudo fuser -km {q_path}", check=False)
            await self.pool.execute(host, f"sudo umount {'-f ' if force else ''}{q_path}")
            await self.pool.execute(host, f"sudo rmdir {q_path}", check=False)
            logger.info("Device unmounted", host=host, path=path, force=force)
        if self.mount_store is not None:
            await self.mount_store.mark_path_unmounted(host, path)
        return was_mounted

    async def active_mounts(self, host: str, prefix: str | None = None) -> list[ActiveMount]:
        mounts = parse_df(await self.pool.execute(host, "df -hT", silent=True))
        if prefix:
            mounts = [m for m in mounts if m.mount_path.startswith(prefix)]
        return mounts
