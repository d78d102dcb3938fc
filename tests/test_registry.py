"""Tests for the scanner registry and base scanner contract."""

from datetime import timedelta

import pytest

from vscan.core.registry import ScannerRegistry
from vscan.scanners.base import OsFamily, Scanner


def test_registry_discovers_scanners():
    reg = ScannerRegistry()
    reg.discover()
    assert reg.names() == ["grype", "trivy"]
    assert reg.is_discovered


def test_registry_get_returns_class():
    reg = ScannerRegistry()
    reg.discover()
    cls = reg.get("trivy")
    assert cls is not None
    assert issubclass(cls, Scanner)


def test_registry_get_unknown_returns_none():
    reg = ScannerRegistry()
    reg.discover()
    assert reg.get("does_not_exist") is None
    with pytest.raises(KeyError):
        reg.create("does_not_exist")


def test_create_passes_cache_settings():
    reg = ScannerRegistry(cache_root="/var/cache/vscan/", db_max_age=timedelta(hours=6))
    reg.discover()
    grype = reg.create("grype")
    assert grype.cache_dir == "/var/cache/vscan/grype-db"
    assert grype.db_max_age == timedelta(hours=6)


def test_scanner_metadata_fields():
    reg = ScannerRegistry()
    reg.discover()
    for name, cls in reg.all().items():
        meta = cls.metadata
        assert meta.name == name
        assert "/" in meta.repository
        assert meta.binary.startswith("/")


def test_install_commands_per_family():
    reg = ScannerRegistry()
    reg.discover()
    trivy = reg.create("trivy")
    rhel = " ".join(trivy.install_commands(OsFamily.RHEL, "0.50.1"))
    debian = " ".join(trivy.install_commands(OsFamily.DEBIAN, "0.50.1"))
    assert "rpm -ivh" in rhel and "0.50.1" in rhel
    assert "apt-get install" in debian and ".deb" in debian


def test_scan_command_quotes_target():
    reg = ScannerRegistry()
    reg.discover()
    cmd = reg.create("trivy").scan_command("/tmp/Veeam.Mount.FS.a b", "/tmp/out.json")
    assert "'/tmp/Veeam.Mount.FS.a b'" in cmd
    assert "--skip-db-update" in cmd


def test_concrete_scanner_without_metadata_raises():
    with pytest.raises(TypeError, match="metadata"):
        class BadScanner(Scanner):
            def version_command(self): return ""
            def parse_version(self, output): return None
            def install_commands(self, os_family, version): return []
            def db_status_command(self): return ""
            def parse_db_status(self, output, now): return None
            def db_update_command(self): return ""
            def scan_command(self, target, output_file): return ""
