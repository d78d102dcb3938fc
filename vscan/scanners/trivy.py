"""Trivy (aquasecurity/trivy) plugin."""

from __future__ import annotations

import re
import shlex
from datetime import datetime, timezone

from vscan.scanners.base import DatabaseStatus, OsFamily, Scanner, ScannerMetadata

_VERSION_RE = re.compile(r"^Version:\s*v?(\d+(?:\.\d+)*)", re.MULTILINE)
_NEXT_UPDATE_RE = re.compile(r"NextUpdate:\s*(\S+)\s+(\S+)")
_UPDATED_AT_RE = re.compile(r"UpdatedAt:\s*(\S+)\s+(\S+)")

_RELEASE_URL = "https://github.com/aquasecurity/trivy/releases/download/v{v}/trivy_{v}_Linux-64bit.{ext}"


def _parse_go_time(date_part: str, time_part: str) -> datetime | None:
    """Parse the ``2024-03-15 06:13:51.48564297 +0000 UTC`` form Trivy prints."""
    try:
        return datetime.strptime(
            f"{date_part} {time_part.split('.')[0]}", "%Y-%m-%d %H:%M:%S"
        ).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class TrivyScanner(Scanner):
    metadata = ScannerMetadata(
        name="trivy",
        display_name="Trivy",
        repository="aquasecurity/trivy",
        description="Filesystem vulnerability scanner from Aqua Security",
        binary="/usr/bin/trivy",
    )

    def version_command(self) -> str:
        return f"{self.metadata.binary} --version 2>/dev/null | head -n 1"

    def parse_version(self, output: str) -> str | None:
        match = _VERSION_RE.search(output or "")
        return match.group(1) if match else None

    def install_commands(self, os_family: OsFamily, version: str) -> list[str]:
        if os_family is OsFamily.RHEL:
            package = "/tmp/vscan-trivy.rpm"
            url = _RELEASE_URL.format(v=version, ext="rpm")
            install = f"sudo rpm -ivh --force {package}"
        else:
            package = "/tmp/vscan-trivy.deb"
            url = _RELEASE_URL.format(v=version, ext="deb")
            install = f"sudo apt-get install -y {package}"
        return [
            f"curl -sSfL -o {package} {shlex.quote(url)}",
            install,
            f"rm -f {package}",
        ]

    def db_status_command(self) -> str:
        return f"{self.metadata.binary} version --cache-dir {shlex.quote(self.cache_dir)} 2>/dev/null"

    def parse_db_status(self, output: str, now: datetime) -> DatabaseStatus:
        match = _NEXT_UPDATE_RE.search(output or "")
        next_update = _parse_go_time(*match.groups()) if match else None
        updated = _UPDATED_AT_RE.search(output or "")
        updated_at = _parse_go_time(*updated.groups()) if updated else None
        # No database yet, or the publisher's next refresh is already due
        stale = next_update is None or next_update <= now
        return DatabaseStatus(stale=stale, updated_at=updated_at, next_update=next_update)

    def db_update_command(self) -> str:
        cache = shlex.quote(self.cache_dir)
        return f"sudo mkdir -p {cache} && sudo {self.metadata.binary} --cache-dir {cache} image --download-db-only --quiet"

    def scan_command(self, target: str, output_file: str) -> str:
        return (
            f"sudo {self.metadata.binary} fs --scanners vuln --cache-dir {shlex.quote(self.cache_dir)} --skip-db-update"
            f" -q -f json -o {shlex.quote(output_file)} {shlex.quote(target)}"
        )
