"""Tests for config module."""

from pathlib import Path

import pytest

from vault_sync.config import PACKAGED_BASE_CONFIG, Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "VAULT_SYNC_HOME",
        "VAULT_SYNC_BASE_CONFIG",
        "VAULT_SYNC_OVERRIDE_CONFIG",
        "VAULT_SYNC_PORT",
        "VAULT_SYNC_WATCH_INTERVAL",
        "VAULT_SYNC_HOST",
        "VAULT_SYNC_READ_ONLY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_config_defaults():
    """Test config loads with defaults when no env vars set."""
    config = Config.from_env()
    assert config.home == Path.home() / ".vault-sync"
    assert config.base_config == PACKAGED_BASE_CONFIG
    assert config.override_config == Path.home() / ".vault-sync" / "config.yaml"
    assert config.port == 8090
    assert config.watch_interval == 1.0
    assert config.host is None
    assert config.read_only is False


def test_packaged_base_config_exists():
    assert PACKAGED_BASE_CONFIG.is_file()


def test_config_from_env(monkeypatch):
    """Test config loads from environment variables."""
    monkeypatch.setenv("VAULT_SYNC_HOME", "/custom/home")
    monkeypatch.setenv("VAULT_SYNC_BASE_CONFIG", "/etc/vault-sync/base.yaml")
    monkeypatch.setenv("VAULT_SYNC_PORT", "9000")
    monkeypatch.setenv("VAULT_SYNC_WATCH_INTERVAL", "2.5")
    monkeypatch.setenv("VAULT_SYNC_HOST", "laptop")

    config = Config.from_env()
    assert config.home == Path("/custom/home")
    assert config.base_config == Path("/etc/vault-sync/base.yaml")
    assert config.override_config == Path("/custom/home/config.yaml")
    assert config.port == 9000
    assert config.watch_interval == 2.5
    assert config.host == "laptop"


def test_override_config_env_wins_over_home(monkeypatch):
    monkeypatch.setenv("VAULT_SYNC_HOME", "/custom/home")
    monkeypatch.setenv("VAULT_SYNC_OVERRIDE_CONFIG", "/elsewhere/settings.yaml")
    assert Config.from_env().override_config == Path("/elsewhere/settings.yaml")


def test_config_from_env_creates_new_instances():
    """Test Config.from_env() creates new instances each time."""
    config1 = Config.from_env()
    config2 = Config.from_env()
    assert config1 is not config2


def test_config_tilde_expansion(monkeypatch):
    """Test config expands tilde in paths."""
    monkeypatch.setenv("VAULT_SYNC_HOME", "~/custom/vault-sync")
    config = Config.from_env()
    assert "~" not in str(config.home)
    assert config.home.is_absolute()


def test_config_invalid_port_non_numeric(monkeypatch):
    """Test config raises error for non-numeric port."""
    monkeypatch.setenv("VAULT_SYNC_PORT", "not_a_number")
    with pytest.raises(ValueError, match="Invalid VAULT_SYNC_PORT"):
        Config.from_env()


def test_config_invalid_port_out_of_range(monkeypatch):
    """Test config raises error for port out of valid range."""
    monkeypatch.setenv("VAULT_SYNC_PORT", "70000")
    with pytest.raises(ValueError, match="Port must be between 1 and 65535"):
        Config.from_env()


def test_config_invalid_watch_interval(monkeypatch):
    monkeypatch.setenv("VAULT_SYNC_WATCH_INTERVAL", "fast")
    with pytest.raises(ValueError, match="Invalid VAULT_SYNC_WATCH_INTERVAL"):
        Config.from_env()


def test_config_negative_watch_interval(monkeypatch):
    monkeypatch.setenv("VAULT_SYNC_WATCH_INTERVAL", "0")
    with pytest.raises(ValueError, match="Interval must be positive"):
        Config.from_env()


@pytest.mark.parametrize("value, expected", [("1", True), ("true", True), ("YES", True), ("0", False), ("", False)])
def test_config_read_only_from_env(monkeypatch, value, expected):
    monkeypatch.setenv("VAULT_SYNC_READ_ONLY", value)
    assert Config.from_env().read_only is expected


def test_config_read_only_override(monkeypatch):
    """Test the CLI flag wins over the env var."""
    monkeypatch.setenv("VAULT_SYNC_READ_ONLY", "true")
    assert Config.from_env(read_only_override=False).read_only is False


def test_create_store(tmp_path, monkeypatch):
    monkeypatch.setenv("VAULT_SYNC_HOME", str(tmp_path))
    store = Config.from_env().create_store()
    assert store.base_path == PACKAGED_BASE_CONFIG
    assert store.override_path == tmp_path / "config.yaml"
    assert store.get("content_files.template") == "{year}-W{week}.md"
