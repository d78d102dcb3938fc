"""SQLAlchemy ORM models."""

from vscan.models.base import Base
from vscan.models.control_plane import ControlPlaneServer
from vscan.models.mount_point import MountPoint
from vscan.models.scan_host import ScanHost
from vscan.models.scan_record import ScanRecord
from vscan.models.vulnerability import Vulnerability, VulnerabilityHistory

__all__ = [
    "Base", "ControlPlaneServer", "MountPoint", "ScanHost", "ScanRecord",
    "Vulnerability", "VulnerabilityHistory",
]
