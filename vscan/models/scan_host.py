"""ScanHost model — a helper host reached over SSH where mounts are scanned."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vscan.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ScanHost(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "scan_hosts"

    address: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=22)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    secret_enc: Mapped[str | None] = mapped_column(Text, nullable=True)

    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # "debian" | "rhel"
    os_family: Mapped[str | None] = mapped_column(String(20), nullable=True)
    os_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    os_version: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # "connected" | "disconnected" | "error"
    connection_status: Mapped[str] = mapped_column(String(20), nullable=False, default="disconnected")
    last_connected: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_msg: Mapped[str | None] = mapped_column(Text, nullable=True)

    # {"trivy": {"installed": true, "version": "0.50.1", "db_updated_at": "..."}}
    scanner_inventory: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ScanHost address={self.address!r} status={self.connection_status!r}>"
