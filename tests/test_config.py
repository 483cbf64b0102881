"""Tests for configuration management."""

import os
import stat
from unittest.mock import patch

import pytest
import yaml

from snapkeep.config import BackupConfigManager, ConfigValidationError, ConfigValidator, default_data_dir


class TestConfigValidator:
    """Test configuration validation."""

    def setup_method(self):
        """Setup test environment."""
        self.validator = ConfigValidator()

    def test_default_config_is_valid(self, sample_config):
        """Test the shipped defaults validate."""
        assert self.validator.validate_config(sample_config) == []

    def test_missing_section(self, sample_config):
        """Test required sections are enforced."""
        del sample_config["backup"]

        errors = self.validator.validate_config(sample_config)

        assert len(errors) == 1
        assert "backup" in errors[0]

    def test_unknown_key_rejected(self, sample_config):
        """Test typos in keys are caught."""
        sample_config["backup"]["max_local_backup"] = 3

        errors = self.validator.validate_config(sample_config)

        assert errors
        assert "backup" in errors[0]

    def test_time_out_of_range(self, sample_config):
        """Test the HH:MM range check."""
        sample_config["schedule"]["time"] = "24:30"

        errors = self.validator.validate_config(sample_config)

        assert errors == ["Invalid schedule time '24:30': hour must be 00-23 and minute 00-59"]

    def test_weekly_requires_weekday(self):
        """Test weekly schedules need a weekday."""
        errors = self.validator.validate_schedule({"enabled": True, "frequency": "weekly", "time": "02:00"})

        assert any("weekday" in error for error in errors)

    def test_invalid_frequency(self):
        """Test unknown frequencies are rejected by the schema."""
        errors = self.validator.validate_schedule({"enabled": True, "frequency": "hourly", "time": "02:00"})

        assert errors
        assert errors[0].startswith("Schema validation failed")

    def test_remote_enabled_needs_credentials(self, sample_config):
        """Test enabling the replica without a client id or token."""
        sample_config["remote"]["enabled"] = True

        errors = self.validator.validate_config(sample_config)

        assert errors == ["Remote replication is enabled but neither client_id nor access_token is set"]


class TestBackupConfigManager:
    """Test loading, mutation and persistence."""

    @pytest.fixture(autouse=True)
    def setup_manager(self, temp_directory):
        self.data_dir = temp_directory
        self.config_manager = BackupConfigManager(temp_directory)

    def test_load_writes_defaults(self):
        """Test first load creates the config file."""
        config = self.config_manager.load()

        assert os.path.exists(self.config_manager.config_path)
        assert config["backup"]["max_local_backups"] == 30
        assert config["restore"] == {"ttl_hours": 24, "max_attempts": 3}

    def test_config_file_is_private(self):
        """Test the config file, which may hold tokens, is owner-only."""
        self.config_manager.load()

        mode = stat.S_IMODE(os.stat(self.config_manager.config_path).st_mode)

        if os.name != "nt":
            assert mode == 0o600

    def test_partial_file_merged_with_defaults(self):
        """Test missing keys fall back to defaults."""
        with open(self.config_manager.config_path, "w") as f:
            yaml.safe_dump({"backup": {"max_local_backups": 5}}, f)

        config = self.config_manager.load()

        assert config["backup"]["max_local_backups"] == 5
        assert config["backup"]["directory"] == "backups"
        assert config["schedule"]["time"] == "02:00"

    def test_invalid_yaml(self):
        """Test malformed YAML raises a validation error."""
        with open(self.config_manager.config_path, "w") as f:
            f.write("backup: [unclosed")

        with pytest.raises(ConfigValidationError) as exc_info:
            self.config_manager.load()

        assert "Invalid YAML" in exc_info.value.errors[0]

    def test_non_mapping_document(self):
        """Test a YAML list is rejected."""
        with open(self.config_manager.config_path, "w") as f:
            f.write("- a\n- b\n")

        with pytest.raises(ConfigValidationError):
            self.config_manager.load()

    def test_invalid_values(self):
        """Test schema violations raise."""
        with open(self.config_manager.config_path, "w") as f:
            yaml.safe_dump({"backup": {"max_local_backups": 0}}, f)

        with pytest.raises(ConfigValidationError):
            self.config_manager.load()

    def test_update_schedule_persists(self):
        """Test schedule mutations are written to disk."""
        schedule = {"enabled": True, "frequency": "weekly", "time": "03:15", "weekday": 3}

        self.config_manager.update_schedule(schedule)

        reloaded = BackupConfigManager(self.data_dir).load()
        assert reloaded["schedule"] == schedule

    def test_update_schedule_invalid_leaves_config(self):
        """Test a rejected schedule is not applied."""
        before = self.config_manager.get_section("schedule")

        with pytest.raises(ConfigValidationError):
            self.config_manager.update_schedule({"enabled": True, "frequency": "daily", "time": "7pm"})

        assert self.config_manager.get_section("schedule") == before

    def test_configure_remote_and_tokens(self):
        """Test remote settings and refreshed tokens persist."""
        self.config_manager.configure_remote(enabled=True, client_id="cid", refresh_token="r1")

        self.config_manager.update_remote_tokens("a1", 1700000000.0)

        remote = BackupConfigManager(self.data_dir).load()["remote"]
        assert remote["enabled"] is True
        assert remote["access_token"] == "a1"
        assert remote["refresh_token"] == "r1"
        assert remote["token_expires_at"] == 1700000000.0

    def test_failed_save_rolls_back(self):
        """Test an I/O failure leaves the in-memory config unchanged."""
        self.config_manager.load()

        with patch.object(self.config_manager.files, "atomic_write_text", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                self.config_manager.set_retention(7)

        assert self.config_manager.config["backup"]["max_local_backups"] == 30

    def test_paths_resolve_inside_data_dir(self):
        """Test database and backup paths are absolute and inside the data dir."""
        assert self.config_manager.database_path == os.path.join(os.path.abspath(self.data_dir), "store.db")
        assert self.config_manager.backup_dir == os.path.join(os.path.abspath(self.data_dir), "backups")

    def test_default_data_dir_env_override(self):
        """Test the environment variable wins."""
        with patch.dict(os.environ, {"SNAPKEEP_DATA_DIR": "/srv/snapkeep"}):
            assert default_data_dir() == "/srv/snapkeep"
