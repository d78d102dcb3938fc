"""Grype (anchore/grype) plugin."""

from __future__ import annotations

import json
import re
import shlex
from datetime import datetime

from vscan.scanners.base import DatabaseStatus, OsFamily, Scanner, ScannerMetadata

_VERSION_RE = re.compile(r"^Version:\s*v?(\d+(?:\.\d+)*)", re.MULTILINE)

_INSTALL_SCRIPT = "https://raw.githubusercontent.com/anchore/grype/main/install.sh"


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GrypeScanner(Scanner):
    metadata = ScannerMetadata(
        name="grype",
        display_name="Grype",
        repository="anchore/grype",
        description="Vulnerability scanner for filesystems from Anchore",
        binary="/usr/local/bin/grype",
    )

    def _env(self) -> str:
        return f"GRYPE_DB_CACHE_DIR={shlex.quote(self.cache_dir)} GRYPE_DB_AUTO_UPDATE=false"

    def version_command(self) -> str:
        return f"{self.metadata.binary} version 2>/dev/null"

    def parse_version(self, output: str) -> str | None:
        match = _VERSION_RE.search(output or "")
        return match.group(1) if match else None

    def install_commands(self, os_family: OsFamily, version: str) -> list[str]:
        # The upstream installer works the same on both families
        return [
            f"curl -sSfL {_INSTALL_SCRIPT} | sudo sh -s -- -b /usr/local/bin v{shlex.quote(version)}",
        ]

    def db_status_command(self) -> str:
        return f"env {self._env()} {self.metadata.binary} db status -o json 2>/dev/null"

    def parse_db_status(self, output: str, now: datetime) -> DatabaseStatus:
        try:
            data = json.loads(output or "")
        except json.JSONDecodeError:
            return DatabaseStatus(stale=True, details={"reason": "unreadable status"})
        if not isinstance(data, dict):
            return DatabaseStatus(stale=True, details={"reason": "unreadable status"})
        built = _parse_iso(data.get("built"))
        if built is None:
            return DatabaseStatus(stale=True, details=data)
        return DatabaseStatus(stale=now - built > self.db_max_age, updated_at=built, details=data)

    def db_update_command(self) -> str:
        return (
            f"sudo mkdir -p {shlex.quote(self.cache_dir)}"
            f" && sudo env {self._env()} {self.metadata.binary} db update"
        )

    def scan_command(self, target: str, output_file: str) -> str:
        return (
            f"sudo env {self._env()} {self.metadata.binary} dir:{shlex.quote(target)}"
            f" -q -o json --file {shlex.quote(output_file)}"
        )
