"""Local backup storage: artifacts and their metadata sidecars."""

import json
import logging
import os
import shutil
from typing import Any, Dict, List, Optional

from snapkeep.utils.errors import StorageError, ValidationError
from snapkeep.utils.files import FileManager

from .models import BackupRecord

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".db"
METADATA_SUFFIX = ".metadata.json"
AUX_SUFFIXES = ("-wal", "-shm")


class BackupStorage:
    """Manages the on-disk layout of the local backup directory.

    Each backup is ``{id}.db`` plus a ``{id}.metadata.json`` sidecar. An
    artifact without a readable sidecar is treated as absent.
    """

    def __init__(self, files: FileManager, backup_dir: str = "backups", verbose: bool = False):
        """
        Initialize backup storage manager.

        Args:
            files: File manager scoped to the data directory
            backup_dir: Backup directory, relative to the data directory
            verbose: Enable verbose output
        """
        self.files = files
        self.backup_dir = backup_dir
        self.verbose = verbose

    @property
    def backup_path(self) -> str:
        return self.files.resolve(self.backup_dir)

    def setup_backup_storage(self) -> Dict[str, Any]:
        """
        Create the backup directory and report on the volume it lives on.

        Returns:
            Dict[str, Any]: Setup results
        """
        setup_result = {
            "success": True,
            "errors": [],
            "backup_path": self.backup_path,
            "storage_info": {},
        }

        try:
            self.files.ensure_directory(self.backup_dir)
            setup_result["storage_info"] = self.get_storage_info()

            if self.verbose:
                print(f"Local backup storage ready: {self.backup_path}")
                print(f"Available space: {setup_result['storage_info'].get('available_gb', 'unknown')} GB")

        except OSError as e:
            setup_result["success"] = False
            setup_result["errors"].append(f"Local storage setup failed: {e}")

        return setup_result

    def directory_exists(self) -> bool:
        return os.path.isdir(self.backup_path)

    def artifact_relpath(self, filename: str) -> str:
        return os.path.join(self.backup_dir, filename)

    def artifact_path(self, filename: str) -> str:
        return self.files.resolve(self.artifact_relpath(filename))

    def metadata_relpath(self, backup_id: str) -> str:
        return os.path.join(self.backup_dir, f"{backup_id}{METADATA_SUFFIX}")

    def save_record(self, record: BackupRecord) -> None:
        """
        Persist a record's sidecar atomically.

        Raises:
            StorageError: If the sidecar cannot be written
        """
        if not record.is_valid():
            raise ValidationError(f"Refusing to save invalid backup record: {record.id}")

        content = json.dumps(record.to_dict(), indent=2)
        try:
            self.files.atomic_write_text(self.metadata_relpath(record.id), content)
        except OSError as e:
            raise StorageError(f"Failed to save metadata for {record.id}", details=str(e)) from e

    def load_record(self, backup_id: str) -> Optional[BackupRecord]:
        """Return the record for ``backup_id``, or None if missing or unreadable."""
        relpath = self.metadata_relpath(backup_id)
        if not self.files.exists(relpath):
            return None

        try:
            data = json.loads(self.files.read_text(relpath))
            record = BackupRecord.from_dict(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load metadata for {backup_id}: {e}")
            return None

        if not record.is_valid():
            logger.warning(f"Ignoring invalid backup record: {backup_id}")
            return None

        return record

    def list_records(self) -> List[BackupRecord]:
        """List valid local records, newest first."""
        records = []
        for name in self.files.list_dir(self.backup_dir):
            if not name.endswith(METADATA_SUFFIX):
                continue
            record = self.load_record(name[: -len(METADATA_SUFFIX)])
            if record is not None:
                records.append(record)

        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def has_artifact(self, record: BackupRecord) -> bool:
        return self.files.exists(self.artifact_relpath(record.filename))

    def read_artifact(self, record: BackupRecord) -> bytes:
        try:
            return self.files.read_bytes(self.artifact_relpath(record.filename))
        except OSError as e:
            raise StorageError(f"Failed to read backup artifact {record.filename}", details=str(e)) from e

    def read_aux_files(self, record: BackupRecord) -> Dict[str, bytes]:
        """Return engine side files (``-wal``/``-shm``) stored with a backup."""
        aux = {}
        for suffix in AUX_SUFFIXES:
            relpath = self.artifact_relpath(record.filename + suffix)
            if self.files.exists(relpath):
                aux[suffix] = self.files.read_bytes(relpath)
        return aux

    def delete_artifact(self, record: BackupRecord) -> None:
        """Remove the artifact and any side files. Raises on failure."""
        for suffix in AUX_SUFFIXES:
            self.files.delete(self.artifact_relpath(record.filename + suffix))
        self.files.delete(self.artifact_relpath(record.filename))

    def delete_metadata(self, backup_id: str) -> None:
        self.files.delete(self.metadata_relpath(backup_id))

    def find_by_remote_id(self, remote_id: str) -> Optional[BackupRecord]:
        for record in self.list_records():
            if record.remote_id == remote_id:
                return record
        return None

    def find_dangling_metadata(self) -> List[str]:
        """Ids whose sidecar claims a local artifact that no longer exists."""
        dangling = []
        for record in self.list_records():
            if record.is_local and not self.has_artifact(record):
                dangling.append(record.id)
        return dangling

    def find_orphaned_artifacts(self) -> List[str]:
        """Artifact filenames with no readable sidecar."""
        referenced = {record.filename for record in self.list_records()}
        orphans = []
        for name in self.files.list_dir(self.backup_dir):
            if name.endswith(ARTIFACT_SUFFIX) and name not in referenced:
                orphans.append(name)
        return orphans

    def total_size(self) -> int:
        return sum(record.size for record in self.list_records() if record.is_local)

    def get_storage_info(self) -> Dict[str, Any]:
        """Get disk usage for the volume holding the backup directory."""
        try:
            usage = shutil.disk_usage(self.backup_path)
        except OSError as e:
            return {"error": f"Failed to get storage info: {e}"}

        return {
            "total_gb": round(usage.total / 1024 / 1024 / 1024, 2),
            "used_gb": round(usage.used / 1024 / 1024 / 1024, 2),
            "available_gb": round(usage.free / 1024 / 1024 / 1024, 2),
            "usage_percent": f"{round(usage.used * 100 / usage.total)}%" if usage.total else "unknown",
        }
