"""Configuration management for SnapKeep."""

from .manager import BackupConfigManager, default_data_dir
from .validator import ConfigValidationError, ConfigValidator

__all__ = ["BackupConfigManager", "ConfigValidationError", "ConfigValidator", "default_data_dir"]
