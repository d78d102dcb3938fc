"""Initial schema: scan hosts, control plane, scan records, vulnerabilities, mounts.

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ── scan_hosts ───────────────────────────────────────────────────────────
    op.create_table(
        "scan_hosts",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("address", sa.String(255), nullable=False, unique=True),
        sa.Column("port", sa.Integer(), nullable=False, server_default="22"),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("secret_enc", sa.Text(), nullable=True),
        sa.Column("hostname", sa.String(255), nullable=True),
        sa.Column("os_family", sa.String(20), nullable=True),
        sa.Column("os_name", sa.String(255), nullable=True),
        sa.Column("os_version", sa.String(50), nullable=True),
        sa.Column("connection_status", sa.String(20), nullable=False, server_default="disconnected"),
        sa.Column("last_connected", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_msg", sa.Text(), nullable=True),
        sa.Column("scanner_inventory", JSONB(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_scan_hosts_address", "scan_hosts", ["address"])

    # ── control_plane_servers ────────────────────────────────────────────────
    op.create_table(
        "control_plane_servers",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("server", sa.String(255), nullable=False, unique=True),
        sa.Column("port", sa.Integer(), nullable=False, server_default="9392"),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("password_enc", sa.Text(), nullable=False),
        sa.Column("remote_version", sa.String(100), nullable=True),
        sa.Column("connection_status", sa.String(20), nullable=False, server_default="disconnected"),
        sa.Column("last_connected", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # ── scan_records ─────────────────────────────────────────────────────────
    op.create_table(
        "scan_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("host", sa.String(255), nullable=False),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("scanner_type", sa.String(20), nullable=False),
        sa.Column("batch_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("total_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("critical_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("high_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("medium_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("low_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_kind", sa.String(50), nullable=True),
        sa.Column("error_msg", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_scan_records_item_name", "scan_records", ["item_name"])
    op.create_index("ix_scan_records_batch_id", "scan_records", ["batch_id"])

    # ── vulnerabilities ──────────────────────────────────────────────────────
    op.create_table(
        "vulnerabilities",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("finding_id", sa.String(100), nullable=False),
        sa.Column("package_name", sa.String(255), nullable=False),
        sa.Column("installed_version", sa.String(100), nullable=False, server_default=""),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="UNKNOWN"),
        sa.Column("fixed_version", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_links", sa.Text(), nullable=True),
        sa.Column("published_date", sa.String(50), nullable=True),
        sa.Column("package_path", sa.Text(), nullable=True),
        sa.Column("scanner_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("in_kev", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("first_discovered", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "last_scan_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("scan_records.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "finding_id", "package_name", "installed_version", "item_name",
            name="uq_vulnerability_finding",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'in_review', 'confirmed', 'false_positive', 'fixed', 'wont_fix')",
            name="ck_vulnerability_status",
        ),
    )
    op.create_index("ix_vulnerabilities_finding_id", "vulnerabilities", ["finding_id"])
    op.create_index("ix_vulnerabilities_item_name", "vulnerabilities", ["item_name"])

    # ── vulnerability_history ────────────────────────────────────────────────
    op.create_table(
        "vulnerability_history",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "vulnerability_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("vulnerabilities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "scan_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("scan_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scan_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("fixed_version", sa.String(255), nullable=True),
    )
    op.create_index("ix_vulnerability_history_vulnerability_id", "vulnerability_history", ["vulnerability_id"])
    op.create_index("ix_vulnerability_history_scan_id", "vulnerability_history", ["scan_id"])

    # ── mount_points ─────────────────────────────────────────────────────────
    op.create_table(
        "mount_points",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("host", sa.String(255), nullable=False),
        sa.Column("device", sa.String(512), nullable=False),
        sa.Column("mount_path", sa.String(1024), nullable=False),
        sa.Column("fs_type", sa.String(50), nullable=True),
        sa.Column("mount_options", sa.String(255), nullable=True),
        sa.Column("job_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="mounted"),
        sa.Column("mounted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unmounted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_msg", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_mount_points_host", "mount_points", ["host"])
    op.create_index("ix_mount_points_job_id", "mount_points", ["job_id"])


def downgrade() -> None:
    op.drop_table("mount_points")
    op.drop_table("vulnerability_history")
    op.drop_table("vulnerabilities")
    op.drop_table("scan_records")
    op.drop_table("control_plane_servers")
    op.drop_table("scan_hosts")
