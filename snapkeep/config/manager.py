"""Configuration management for SnapKeep."""

import copy
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from snapkeep.utils.files import FileManager

from .schemas import DEFAULT_CONFIG
from .validator import ConfigValidationError, ConfigValidator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "snapkeep.yml"


def default_data_dir() -> str:
    """Return the application data directory.

    ``SNAPKEEP_DATA_DIR`` overrides the platform default.
    """
    override = os.environ.get("SNAPKEEP_DATA_DIR")
    if override:
        return override

    if os.name == "nt":
        base = os.environ.get("APPDATA") or os.path.expanduser("~")
        return os.path.join(base, "snapkeep")

    return os.path.join(os.path.expanduser("~"), ".local", "share", "snapkeep")


def _merge_defaults(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


class BackupConfigManager:
    """Loads, mutates and persists the backup configuration document.

    The document is loaded once, and every mutation is written back to disk
    before the call returns.
    """

    def __init__(self, data_dir: Optional[str] = None, config_filename: str = CONFIG_FILENAME):
        """
        Initialize configuration manager.

        Args:
            data_dir: Application data directory (defaults to the platform path)
            config_filename: Name of the YAML document inside the data directory
        """
        self.data_dir = os.path.abspath(data_dir or default_data_dir())
        self.config_filename = config_filename
        self.files = FileManager(self.data_dir)
        self.validator = ConfigValidator()
        self._config: Optional[Dict[str, Any]] = None

    @property
    def config_path(self) -> str:
        return os.path.join(self.data_dir, self.config_filename)

    @property
    def config(self) -> Dict[str, Any]:
        if self._config is None:
            return self.load()
        return self._config

    def load(self, validate: bool = True) -> Dict[str, Any]:
        """
        Load the configuration document, writing defaults on first use.

        Args:
            validate: Whether to validate the configuration

        Returns:
            Dict[str, Any]: Loaded configuration

        Raises:
            ConfigValidationError: If the document is malformed or invalid
        """
        if not os.path.exists(self.config_path):
            logger.info(f"No configuration found, writing defaults to {self.config_path}")
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self.save()
            return self._config

        try:
            with open(self.config_path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError([f"Invalid YAML in {self.config_path}: {e}"])

        if not isinstance(raw, dict):
            raise ConfigValidationError([f"Configuration root must be a mapping: {self.config_path}"])

        config = _merge_defaults(DEFAULT_CONFIG, raw)

        if validate:
            errors = self.validate_config(config)
            if errors:
                raise ConfigValidationError(errors)

        self._config = config
        return config

    def save(self) -> None:
        """Persist the in-memory configuration."""
        if self._config is None:
            raise ValueError("No configuration loaded")

        errors = self.validate_config(self._config)
        if errors:
            raise ConfigValidationError(errors)

        content = yaml.dump(self._config, default_flow_style=False, sort_keys=False)
        # The document may carry remote credentials
        self.files.atomic_write_text(self.config_filename, content, mode=0o600)

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        return self.validator.validate_config(config)

    def get_section(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self.config.get(name, {}))

    def resolve_path(self, relative: str) -> str:
        return self.files.resolve(relative)

    @property
    def database_path(self) -> str:
        return self.resolve_path(self.config["database"]["path"])

    @property
    def backup_dir(self) -> str:
        return self.resolve_path(self.config["backup"]["directory"])

    def update_schedule(self, schedule: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace the schedule section and persist it.

        Args:
            schedule: New schedule ({enabled, frequency, time, weekday?})

        Returns:
            Dict[str, Any]: The stored schedule
        """
        errors = self.validator.validate_schedule(schedule)
        if errors:
            raise ConfigValidationError(errors)

        return self._mutate("schedule", schedule, replace=True)

    def configure_remote(self, **settings: Any) -> Dict[str, Any]:
        """Update remote replication settings and persist them."""
        return self._mutate("remote", settings)

    def update_remote_tokens(
        self,
        access_token: str,
        token_expires_at: Optional[float],
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist a refreshed bearer credential."""
        settings: Dict[str, Any] = {
            "access_token": access_token,
            "token_expires_at": token_expires_at,
        }
        if refresh_token:
            settings["refresh_token"] = refresh_token
        self._mutate("remote", settings)

    def set_retention(self, max_local_backups: int, max_remote_backups: Optional[int] = None) -> Dict[str, Any]:
        settings: Dict[str, Any] = {"max_local_backups": max_local_backups}
        if max_remote_backups is not None:
            settings["max_remote_backups"] = max_remote_backups
        return self._mutate("backup", settings)

    def _mutate(self, section: str, values: Dict[str, Any], replace: bool = False) -> Dict[str, Any]:
        config = copy.deepcopy(self.config)
        if replace:
            config[section] = copy.deepcopy(values)
        else:
            config.setdefault(section, {}).update(values)

        errors = self.validate_config(config)
        if errors:
            raise ConfigValidationError(errors)

        previous = self._config
        self._config = config
        try:
            self.save()
        except Exception:
            self._config = previous
            raise

        logger.debug(f"Configuration section '{section}' updated")
        return copy.deepcopy(config[section])
