"""
Unit tests for configuration loading.
"""
import json

import pytest

from config import Config


@pytest.mark.unit
class TestConfig:
    """Tests for env defaults and the settings file overlay."""

    def test_defaults(self, temp_dir, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        for name in ("RECEIVE_MAX_RETRIES", "LOW_STOCK_THRESHOLD", "BACKUP_RETENTION_COUNT"):
            monkeypatch.delenv(name, raising=False)
        config = Config()
        assert config.receive_max_retries == 3
        assert config.low_stock_threshold == 10
        assert config.backup_retention_count == 7
        assert config.db_path.name == "procurement.db"

    def test_environment_overrides(self, temp_dir, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        monkeypatch.setenv("DB_PATH", str(temp_dir / "x.db"))
        monkeypatch.setenv("RECEIVE_MAX_RETRIES", "5")
        config = Config()
        assert config.db_path == temp_dir / "x.db"
        assert config.receive_max_retries == 5

    def test_settings_file_overlay(self, temp_dir, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        monkeypatch.delenv("LOW_STOCK_THRESHOLD", raising=False)
        monkeypatch.setenv("RECEIVE_MAX_RETRIES", "9")
        (temp_dir / "procurement_settings.json").write_text(json.dumps({
            "_comment": "ignored",
            "low_stock_threshold": "4",
            "receive_max_retries": 2,
            "unknown_key": 1,
        }))

        config = Config()
        assert config.low_stock_threshold == 4
        # Environment wins over the settings file
        assert config.receive_max_retries == 9

    def test_broken_settings_file_is_ignored(self, temp_dir, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        monkeypatch.delenv("LOW_STOCK_THRESHOLD", raising=False)
        (temp_dir / "procurement_settings.json").write_text("{not json")
        assert Config().low_stock_threshold == 10

    @pytest.mark.parametrize("raw, expected", [
        ("false", False),
        ("False", False),
        ("0", False),
        (False, False),
        ("true", True),
        (True, True),
    ])
    def test_settings_file_backup_enabled_strings(self, temp_dir, monkeypatch, raw, expected):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        monkeypatch.delenv("BACKUP_ENABLED", raising=False)
        (temp_dir / "procurement_settings.json").write_text(json.dumps({"backup_enabled": raw}))
        assert Config().backup_enabled is expected

    def test_env_backup_enabled_false(self, temp_dir, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        monkeypatch.setenv("BACKUP_ENABLED", "FALSE")
        assert Config().backup_enabled is False
