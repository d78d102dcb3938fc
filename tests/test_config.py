"""Tests for core/config.py."""

from vscan.core.config import Settings


def test_default_settings():
    s = Settings()
    assert s.app_port == 8000
    assert s.app_host == "0.0.0.0"
    assert s.log_level == "INFO"
    assert s.database_url  # non-empty


def test_orchestration_defaults():
    s = Settings()
    assert s.gateway_max_attempts == 3
    assert s.publish_initial_wait == 10.0
    assert s.verify_interval == 15.0
    assert s.verify_max_attempts == 5
    assert s.publish_max_retries == 3
    assert s.publish_retry_delay == 5.0
    assert s.ssh_keepalive_interval == 60.0
    assert s.ssh_sweep_interval == 300.0
    assert s.ssh_max_reconnect_attempts == 3
    assert s.ssh_max_password_attempts == 3


def test_sync_db_url():
    s = Settings(database_url="postgresql+asyncpg://user:pw@localhost/db")
    assert "+asyncpg" not in s.sync_database_url
    assert "postgresql" in s.sync_database_url


def test_env_override(monkeypatch):
    monkeypatch.setenv("VERIFY_INTERVAL", "2.5")
    monkeypatch.setenv("SSH_MAX_RECONNECT_ATTEMPTS", "5")
    s = Settings()
    assert s.verify_interval == 2.5
    assert s.ssh_max_reconnect_attempts == 5
