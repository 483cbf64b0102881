"""Configuration validation for SnapKeep."""

from typing import Any, Dict, List

import jsonschema

from .schemas import BACKUP_CONFIG_SCHEMA


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class ConfigValidator:
    """Validates SnapKeep configuration documents."""

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate a backup configuration document.

        Args:
            config: Configuration dictionary to validate

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        errors = []

        try:
            jsonschema.validate(config, BACKUP_CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            location = ".".join(str(part) for part in e.absolute_path)
            prefix = f"{location}: " if location else ""
            errors.append(f"Schema validation failed: {prefix}{e.message}")
            return errors
        except jsonschema.SchemaError as e:
            errors.append(f"Schema error: {e.message}")
            return errors

        errors.extend(self._validate_schedule(config.get("schedule", {})))
        errors.extend(self._validate_remote(config.get("remote", {})))

        return errors

    def validate_schedule(self, schedule: Dict[str, Any]) -> List[str]:
        """Validate a schedule section on its own."""
        errors = []
        try:
            jsonschema.validate(schedule, BACKUP_CONFIG_SCHEMA["properties"]["schedule"])
        except jsonschema.ValidationError as e:
            errors.append(f"Schema validation failed: {e.message}")
            return errors
        errors.extend(self._validate_schedule(schedule))
        return errors

    def _validate_schedule(self, schedule: Dict[str, Any]) -> List[str]:
        errors = []

        time_value = schedule.get("time")
        if time_value:
            errors.extend(self._validate_time(time_value))

        if schedule.get("frequency") == "weekly" and "weekday" not in schedule:
            errors.append("Weekly schedules require a weekday (0=Sunday .. 6=Saturday)")

        return errors

    def _validate_time(self, value: str) -> List[str]:
        try:
            hours, minutes = (int(part) for part in value.split(":"))
        except ValueError:
            return [f"Invalid schedule time '{value}': expected HH:MM"]

        if not 0 <= hours <= 23 or not 0 <= minutes <= 59:
            return [f"Invalid schedule time '{value}': hour must be 00-23 and minute 00-59"]

        return []

    def _validate_remote(self, remote: Dict[str, Any]) -> List[str]:
        errors = []

        if remote.get("enabled") and not remote.get("access_token") and not remote.get("client_id"):
            errors.append("Remote replication is enabled but neither client_id nor access_token is set")

        return errors
