"""Configuration file schemas for SnapKeep."""

BACKUP_CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "database": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Live database file, relative to the data directory",
                }
            },
            "required": ["path"],
            "additionalProperties": False,
        },
        "backup": {
            "type": "object",
            "properties": {
                "directory": {"type": "string", "minLength": 1},
                "max_local_backups": {"type": "integer", "minimum": 1},
                "max_remote_backups": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Advisory only, never enforced",
                },
                "max_backup_size_mb": {"type": "integer", "minimum": 1},
                "verify_after_backup": {"type": "boolean"},
                "verify_before_restore": {"type": "boolean"},
            },
            "required": ["directory", "max_local_backups"],
            "additionalProperties": False,
        },
        "schedule": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "frequency": {"type": "string", "enum": ["daily", "weekly"]},
                "time": {"type": "string", "pattern": r"^\d{2}:\d{2}$"},
                "weekday": {"type": "integer", "minimum": 0, "maximum": 6},
            },
            "required": ["enabled", "frequency", "time"],
            "additionalProperties": False,
        },
        "remote": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "provider": {"type": "string", "enum": ["google_drive"]},
                "client_id": {"type": "string"},
                "client_secret": {"type": "string"},
                "access_token": {"type": ["string", "null"]},
                "refresh_token": {"type": ["string", "null"]},
                "token_expires_at": {"type": ["number", "null"]},
                "folder_id": {"type": ["string", "null"]},
                "timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
            },
            "required": ["enabled", "provider"],
            "additionalProperties": False,
        },
        "restore": {
            "type": "object",
            "properties": {
                "ttl_hours": {"type": "number", "exclusiveMinimum": 0},
                "max_attempts": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
        "health": {
            "type": "object",
            "properties": {
                "stale_after_days": {"type": "integer", "minimum": 1},
                "min_backup_count": {"type": "integer", "minimum": 0},
            },
            "additionalProperties": False,
        },
    },
    "required": ["database", "backup", "schedule", "remote"],
    "additionalProperties": False,
}


DEFAULT_CONFIG = {
    "database": {"path": "store.db"},
    "backup": {
        "directory": "backups",
        "max_local_backups": 30,
        "max_remote_backups": 50,
        "max_backup_size_mb": 500,
        "verify_after_backup": True,
        "verify_before_restore": True,
    },
    "schedule": {
        "enabled": False,
        "frequency": "daily",
        "time": "02:00",
        "weekday": 0,
    },
    "remote": {
        "enabled": False,
        "provider": "google_drive",
        "client_id": "",
        "client_secret": "",
        "access_token": None,
        "refresh_token": None,
        "token_expires_at": None,
        "folder_id": None,
        "timeout_seconds": 60,
    },
    "restore": {"ttl_hours": 24, "max_attempts": 3},
    "health": {"stale_after_days": 7, "min_backup_count": 3},
}
