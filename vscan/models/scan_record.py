"""ScanRecord model — one scanner run against one mounted backup item."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vscan.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

SCAN_STATUSES = ("in_progress", "completed", "failed", "cancelled")


class ScanRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "scan_records"

    host: Mapped[str] = mapped_column(String(255), nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    scanner_type: Mapped[str] = mapped_column(String(20), nullable=False)
    batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    # "in_progress" | "completed" | "failed" | "cancelled"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="in_progress")

    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    critical_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    high_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    medium_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    error_kind: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_msg: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    history: Mapped[list["VulnerabilityHistory"]] = relationship(  # noqa: F821
        "VulnerabilityHistory", back_populates="scan", cascade="all, delete-orphan"
    )

    @property
    def is_final(self) -> bool:
        return self.status != "in_progress"

    def __repr__(self) -> str:
        return f"<ScanRecord item={self.item_name!r} status={self.status!r}>"
