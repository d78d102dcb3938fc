"""Vulnerability and VulnerabilityHistory models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vscan.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

VULNERABILITY_STATUSES = (
    "pending",
    "in_review",
    "confirmed",
    "false_positive",
    "fixed",
    "wont_fix",
)


class Vulnerability(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One finding for one package version inside one backup item."""

    __tablename__ = "vulnerabilities"
    __table_args__ = (
        UniqueConstraint(
            "finding_id", "package_name", "installed_version", "item_name",
            name="uq_vulnerability_finding",
        ),
        CheckConstraint(
            "status IN ('pending', 'in_review', 'confirmed', 'false_positive', 'fixed', 'wont_fix')",
            name="ck_vulnerability_status",
        ),
    )

    finding_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    package_name: Mapped[str] = mapped_column(String(255), nullable=False)
    installed_version: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    item_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="UNKNOWN")
    fixed_version: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_links: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_date: Mapped[str | None] = mapped_column(String(50), nullable=True)
    package_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    scanner_type: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    in_kev: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    first_discovered: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_scan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("scan_records.id", ondelete="SET NULL"), nullable=True
    )

    history: Mapped[list["VulnerabilityHistory"]] = relationship(
        "VulnerabilityHistory",
        back_populates="vulnerability",
        cascade="all, delete-orphan",
        order_by="VulnerabilityHistory.scan_date",
    )

    def __repr__(self) -> str:
        return (
            f"<Vulnerability {self.finding_id!r} pkg={self.package_name!r} "
            f"item={self.item_name!r}>"
        )


class VulnerabilityHistory(UUIDPrimaryKeyMixin, Base):
    """Append-only trail: one row per upsert of a vulnerability."""

    __tablename__ = "vulnerability_history"

    vulnerability_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("vulnerabilities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scan_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("scan_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scan_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    fixed_version: Mapped[str | None] = mapped_column(String(255), nullable=True)

    vulnerability: Mapped[Vulnerability] = relationship(back_populates="history")
    scan: Mapped["ScanRecord"] = relationship(back_populates="history")  # noqa: F821
