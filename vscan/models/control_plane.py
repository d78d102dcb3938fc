"""ControlPlaneServer model — last-known-good backup server connection."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vscan.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ControlPlaneServer(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "control_plane_servers"

    server: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=9392)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password_enc: Mapped[str] = mapped_column(Text, nullable=False)

    remote_version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # "connected" | "disconnected"
    connection_status: Mapped[str] = mapped_column(String(20), nullable=False, default="disconnected")
    last_connected: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ControlPlaneServer server={self.server!r}>"
