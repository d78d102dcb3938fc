"""MountPoint model — tracks filesystems mounted on scan hosts for recovery."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vscan.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

MOUNT_STATUSES = ("mounted", "unmounted", "failed")


class MountPoint(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "mount_points"

    host: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    device: Mapped[str] = mapped_column(String(512), nullable=False)
    mount_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    fs_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mount_options: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Set when the mount was produced by a publish job
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    # "mounted" | "unmounted" | "failed"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="mounted")
    mounted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unmounted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_msg: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<MountPoint {self.mount_path!r} status={self.status!r}>"
