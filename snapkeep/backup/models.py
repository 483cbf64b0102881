"""Data model for backups, staged restores and health reports."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from snapkeep.utils.errors import ValidationError

RECORD_VERSION = "2"
REMOTE_ID_PREFIX = "remote-"


class BackupOrigin(Enum):
    """What triggered a backup."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"


class RestoreSource(Enum):
    """Where the bytes of a restore come from."""

    LOCAL = "local"
    REMOTE = "remote"


class RestoreState(Enum):
    """States of the staged restore state machine."""

    NONE = "none"
    STAGED = "staged"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def generate_backup_id(origin: BackupOrigin, now: Optional[datetime] = None) -> str:
    """Generate a time-derived, type-tagged backup id."""
    now = now or utcnow()
    return f"backup-{origin.value}-{now.strftime('%Y%m%dT%H%M%S%fZ')}"


@dataclass
class BackupRecord:
    """Metadata for one backup artifact."""

    id: str
    filename: str
    original_filename: str
    size: int
    checksum: str
    created_at: datetime
    origin: BackupOrigin
    is_local: bool = True
    is_remote: bool = False
    remote_id: Optional[str] = None
    version: str = RECORD_VERSION

    def is_valid(self) -> bool:
        """A listable record lives somewhere, and remote ones know their object id."""
        if not self.is_local and not self.is_remote:
            return False
        if self.is_remote and not self.remote_id:
            return False
        return True

    def mark_remote(self, remote_id: str) -> None:
        if not remote_id:
            raise ValidationError("Remote object id must not be empty")
        self.is_remote = True
        self.remote_id = remote_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": RECORD_VERSION,
            "id": self.id,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "size": self.size,
            "checksum": self.checksum,
            "created_at": self.created_at.isoformat(),
            "origin": self.origin.value,
            "is_local": self.is_local,
            "is_remote": self.is_remote,
            "remote_id": self.remote_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupRecord":
        """Build a record from any supported sidecar schema version."""
        if not isinstance(data, dict):
            raise ValidationError("Backup metadata must be a JSON object")

        version = str(data.get("version", "1.0"))
        adapter = RECORD_ADAPTERS.get(version)
        if adapter is None:
            raise ValidationError(
                f"Unsupported backup metadata version: {version}",
                suggestions=["Upgrade SnapKeep to read metadata written by newer releases"],
            )

        try:
            fields = adapter(data)
            return cls(
                id=str(fields["id"]),
                filename=str(fields["filename"]),
                original_filename=str(fields.get("original_filename") or ""),
                size=int(fields.get("size") or 0),
                checksum=str(fields.get("checksum") or ""),
                created_at=parse_timestamp(fields["created_at"]),
                origin=BackupOrigin(fields.get("origin") or "manual"),
                is_local=bool(fields.get("is_local", True)),
                is_remote=bool(fields.get("is_remote", False)),
                remote_id=fields.get("remote_id") or None,
                version=version,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed backup metadata: {e}") from e

    @classmethod
    def from_remote(cls, artifact: "RemoteArtifact", original_filename: str) -> "BackupRecord":
        """Describe a remote object that has no local sidecar."""
        origin = BackupOrigin.MANUAL if "manual" in artifact.name else BackupOrigin.AUTOMATIC
        return cls(
            id=f"{REMOTE_ID_PREFIX}{artifact.id}",
            filename=artifact.name,
            original_filename=original_filename,
            size=artifact.size,
            checksum="",
            created_at=artifact.created_at,
            origin=origin,
            is_local=False,
            is_remote=True,
            remote_id=artifact.id,
        )


def _adapt_v1(data: Dict[str, Any]) -> Dict[str, Any]:
    # Written by 1.x releases with camelCase keys and Google Drive naming
    return {
        "id": data["id"],
        "filename": data["filename"],
        "original_filename": data.get("originalFilename"),
        "size": data.get("size"),
        "checksum": data.get("checksum"),
        "created_at": data["createdAt"],
        "origin": data.get("type"),
        "is_local": data.get("isLocal", True),
        "is_remote": data.get("isGoogleDrive", False),
        "remote_id": data.get("googleDriveFileId"),
    }


def _adapt_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    return data


RECORD_ADAPTERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "1.0": _adapt_v1,
    RECORD_VERSION: _adapt_v2,
}


@dataclass
class RestoreCommand:
    """Durable token recording that a restore is pending."""

    backup_id: str
    source: RestoreSource
    created_at: datetime
    expires_at: datetime
    checksum: str = ""
    remote_id: Optional[str] = None
    attempts: int = 0
    aux_files: List[str] = field(default_factory=list)
    action: str = "restore"

    @classmethod
    def create(
        cls,
        backup_id: str,
        source: RestoreSource,
        ttl: timedelta,
        checksum: str = "",
        remote_id: Optional[str] = None,
        aux_files: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> "RestoreCommand":
        now = now or utcnow()
        return cls(
            backup_id=backup_id,
            source=source,
            created_at=now,
            expires_at=now + ttl,
            checksum=checksum,
            remote_id=remote_id,
            aux_files=list(aux_files or []),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "backup_id": self.backup_id,
            "source": self.source.value,
            "remote_id": self.remote_id,
            "checksum": self.checksum,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "attempts": self.attempts,
            "aux_files": list(self.aux_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestoreCommand":
        if not isinstance(data, dict):
            raise ValidationError("Restore command must be a JSON object")

        try:
            action = data.get("action", "restore")
            if action != "restore":
                raise ValueError(f"unknown action '{action}'")
            return cls(
                action=action,
                backup_id=str(data["backup_id"]),
                source=RestoreSource(data.get("source", "local")),
                remote_id=data.get("remote_id") or None,
                checksum=str(data.get("checksum") or ""),
                created_at=parse_timestamp(data["created_at"]),
                expires_at=parse_timestamp(data["expires_at"]),
                attempts=int(data.get("attempts", 0)),
                aux_files=[str(suffix) for suffix in data.get("aux_files", [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed restore command: {e}") from e


@dataclass
class RemoteArtifact:
    """An object stored in the remote replica."""

    id: str
    name: str
    size: int
    created_at: datetime


@dataclass
class BackupResult:
    """Outcome of a backup creation."""

    success: bool
    backup_id: Optional[str] = None
    size: int = 0
    checksum: str = ""
    duration: float = 0.0
    local_path: Optional[str] = None
    remote_id: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RestoreResult:
    """Outcome of a restore transition."""

    success: bool
    state: RestoreState
    backup_id: Optional[str] = None
    source: Optional[RestoreSource] = None
    message: str = ""
    error: Optional[str] = None
    duration: float = 0.0
    requires_restart: bool = False
    safety_copy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["source"] = self.source.value if self.source else None
        return data


@dataclass
class HealthReport:
    """Result of a read-only diagnostic sweep."""

    healthy: bool
    status: str
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    total_backups: int = 0
    total_size: int = 0
    last_backup: Optional[datetime] = None
    next_scheduled: Optional[datetime] = None
    pending_restore: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_backup"] = self.last_backup.isoformat() if self.last_backup else None
        data["next_scheduled"] = self.next_scheduled.isoformat() if self.next_scheduled else None
        return data
